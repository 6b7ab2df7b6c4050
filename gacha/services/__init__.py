# Service package init
