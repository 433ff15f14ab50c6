# votingflow/database/models.py

from votingflow import db
from datetime import datetime, timezone

# Login credentials behind the identities the voting session knows about.
# Voter registration itself lives in the session, not here.


def _utcnow():
    return datetime.now(timezone.utc)


class Account(db.Model):
    __tablename__ = 'accounts'
    id = db.Column(db.Integer, primary_key=True)
    identity = db.Column(db.String(42), unique=True, nullable=False)  # 0x-prefixed address
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id
    mfa_secret = db.Column(db.String(64), nullable=True)  # TOTP, required for the administrator
    created_at = db.Column(db.DateTime, default=_utcnow)

    @classmethod
    def find(cls, identity):
        return db.session.query(cls).filter_by(identity=identity).first()

    def __repr__(self):
        return f'<Account {self.identity}>'
