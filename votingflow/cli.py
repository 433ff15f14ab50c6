# votingflow/cli.py

# Operator commands, e.g. `flask --app votingflow:create_app create-account 0x...`

import click
from flask import current_app

from votingflow import db
from votingflow.authentication.mfa import MFAService
from votingflow.database.models import Account
from votingflow.encryption.password_hashing import PasswordHashingService
from votingflow.security.input_validator import InputValidator


def create_account(identity, password, with_mfa=False):
    """Create a login account; returns (account, mfa_secret or None)."""
    identity = InputValidator().normalize_identity(identity)
    if Account.find(identity) is not None:
        raise ValueError(f"Account {identity} already exists")

    mfa_secret = None
    if with_mfa or identity == current_app.config['ADMIN_IDENTITY']:
        mfa_secret = MFAService().generate_secret()
    account = Account(
        identity=identity,
        password_hash=PasswordHashingService().hash_password(password),
        mfa_secret=mfa_secret,
    )
    db.session.add(account)
    db.session.commit()
    return account, mfa_secret


def register_commands(app):
    @app.cli.command('create-account')
    @click.argument('identity')
    @click.password_option()
    @click.option('--mfa/--no-mfa', default=False, help='Require a TOTP code at login.')
    def create_account_command(identity, password, mfa):
        """Create a login account for IDENTITY."""
        try:
            account, mfa_secret = create_account(identity, password, with_mfa=mfa)
        except ValueError as e:
            raise click.ClickException(str(e))
        click.echo(f"Account created: {account.identity}")
        if mfa_secret:
            mfa_service = MFAService()
            click.echo(f"MFA secret (for an authenticator app): {mfa_secret}")
            click.echo(f"Provisioning URI: {mfa_service.provisioning_uri(account.identity, mfa_secret)}")
            qr = mfa_service.qr_code_base64(account.identity, mfa_secret)
            click.echo(f"QR code (base64 PNG): {qr[:30]}...")
