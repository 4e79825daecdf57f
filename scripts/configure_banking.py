"""
Store the bank access used by the sync pass. The secret is encrypted with
BANKING_ENCRYPTION_KEY before it is written; it is prompted for when not
given on the command line.

Usage:
    python -m scripts.configure_banking --generate-key
    python -m scripts.configure_banking --bank-name "SozialBank" --bank-code 37020500 \
        --login-id 1234567 --endpoint-url https://fints.example.de/fints \
        --account-number DE12370205000001234567
    python -m scripts.configure_banking --disable
"""

import argparse
import asyncio
import getpass
import sys
from dotenv import load_dotenv

load_dotenv()


async def _configure(args: argparse.Namespace) -> None:
    from app.core.db.engine import AsyncSessionLocal, create_tables
    from app.modules.banking.encryption import SecretCipher
    from app.modules.banking.service import SyncOrchestrator

    await create_tables()
    orchestrator = SyncOrchestrator()

    async with AsyncSessionLocal() as db:
        banking_config = await orchestrator.get_config(db)

        if args.disable or args.enable:
            if banking_config is None:
                print("Banking is not configured yet.")
                sys.exit(1)
            banking_config.sync_enabled = bool(args.enable)
            await db.commit()
            print(f"Bank sync {'enabled' if args.enable else 'disabled'}.")
            return

        required = ("bank_name", "bank_code", "login_id", "endpoint_url", "account_number")
        if banking_config is None:
            missing = [name for name in required if not getattr(args, name)]
            if missing:
                print(f"Missing for a new configuration: {', '.join('--' + m.replace('_', '-') for m in missing)}")
                sys.exit(1)

        secret = args.secret
        if banking_config is None or args.change_secret:
            secret = secret or getpass.getpass("Bank PIN / password: ")
        cipher = SecretCipher()

        if banking_config is None:
            from app.modules.banking.models import BankingConfig

            banking_config = BankingConfig(
                bank_name=args.bank_name,
                bank_code=args.bank_code,
                login_id=args.login_id,
                endpoint_url=args.endpoint_url,
                account_number=args.account_number.replace(" ", "").upper(),
                encrypted_secret=cipher.encrypt(secret),
                sync_enabled=True,
            )
            db.add(banking_config)
        else:
            for name in required:
                value = getattr(args, name)
                if value:
                    setattr(banking_config, name, value)
            if secret:
                banking_config.encrypted_secret = cipher.encrypt(secret)
            if args.reset_checkpoint:
                banking_config.last_sync_at = None

        await db.commit()
        print(f"Banking configuration {banking_config.id} saved ({banking_config.bank_name}).")


def main() -> None:
    parser = argparse.ArgumentParser(description="Configure bank access for the sync pass")
    parser.add_argument("--generate-key", action="store_true", help="Print a new BANKING_ENCRYPTION_KEY and exit")
    parser.add_argument("--bank-name")
    parser.add_argument("--bank-code", help="BLZ or BIC")
    parser.add_argument("--login-id")
    parser.add_argument("--endpoint-url", help="FinTS endpoint or online banking URL")
    parser.add_argument("--account-number", help="IBAN of the account to reconcile")
    parser.add_argument("--secret", help="PIN / password (prompted when omitted)")
    parser.add_argument("--change-secret", action="store_true", help="Prompt for a new secret")
    parser.add_argument("--reset-checkpoint", action="store_true", help="Next sync uses the initial lookback")
    toggle = parser.add_mutually_exclusive_group()
    toggle.add_argument("--enable", action="store_true", help="Enable bank sync")
    toggle.add_argument("--disable", action="store_true", help="Disable bank sync")
    args = parser.parse_args()

    if args.generate_key:
        from app.modules.banking.encryption import generate_key

        print(generate_key())
        return

    asyncio.run(_configure(args))


if __name__ == "__main__":
    main()
