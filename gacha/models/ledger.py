from gacha import db


class RollRecord(db.Model):
    """One completed roll. Rows are only ever inserted.

    ``cooldown_bucket`` is the player's roll ordinal (1, 2, 3...). Each append
    claims ``previous.cooldown_bucket + 1``, so two racing appends that both
    saw the same previous roll collide on the unique constraint and only one
    commits.
    """

    __tablename__ = "roll_record"
    __table_args__ = (db.UniqueConstraint("player_id", "cooldown_bucket", name="uq_roll_player_bucket"),)

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    reward_id = db.Column(db.String(80), nullable=False)
    # Snapshot so history stays readable after pool edits
    reward_name = db.Column(db.String(120), nullable=False)
    rarity = db.Column(db.String(20), nullable=False)
    rolled_at = db.Column(db.DateTime, nullable=False, index=True)  # naive UTC
    cooldown_bucket = db.Column(db.Integer, nullable=False)
    # Generated per roll attempt; lets a retry recognise its own commit
    roll_token = db.Column(db.String(32), nullable=False, unique=True)

    def to_dict(self):
        return {
            "id": self.id,
            "playerId": self.player_id,
            "rewardId": self.reward_id,
            "name": self.reward_name,
            "rarity": self.rarity,
            "rolledAt": self.rolled_at.isoformat() + "Z",
        }
