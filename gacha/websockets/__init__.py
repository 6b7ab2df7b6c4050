# Socket.IO handlers package init
