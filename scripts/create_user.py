"""Add an account to a local data/users.json"""

import json
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich.console import Console

from folio.auth.crypto import CredentialVault
from folio.auth.models import ROLES, Account, NewAccount, parse_model
from folio.core.config import load_config
from folio.github.provider import to_json_text
from folio.utils.exceptions import FolioError
from folio.utils.timestamps import to_iso, utc_now

console = Console()

DEFAULT_USERS_FILE = Path(__file__).resolve().parent.parent / "data" / "users.json"


def add_user(users_file: Path, vault: CredentialVault, new: NewAccount, email_domain: str) -> Account:
    users = []
    if users_file.exists():
        users = json.loads(users_file.read_text(encoding="utf-8") or "[]")
    if any(u.get("username", "").lower() == new.username.lower() for u in users):
        raise FolioError(f'User "{new.username}" already exists', reason="username_taken")

    account = Account(
        username=new.username,
        credential=vault.encrypt(new.password),
        role=new.role,
        email=new.email or f"{new.username}@{email_domain}",
        created_at=to_iso(utc_now()),
    )
    users.append(account.to_record())
    users_file.parent.mkdir(parents=True, exist_ok=True)
    users_file.write_text(to_json_text(users), encoding="utf-8")
    return account


def main() -> int:
    args = sys.argv[1:]
    users_file = DEFAULT_USERS_FILE
    if "--file" in args:
        i = args.index("--file")
        if i + 1 >= len(args):
            console.print("[red]--file needs a path[/red]")
            return 1
        users_file = Path(args[i + 1])
        del args[i:i + 2]

    if len(args) < 2:
        console.print("[red]Usage: python scripts/create_user.py <username> <password> [role] [--file PATH][/red]")
        console.print(f"Roles: {', '.join(ROLES)}")
        return 1

    load_dotenv()
    config = load_config()
    try:
        new = parse_model(
            NewAccount,
            {"username": args[0], "password": args[1], "role": args[2] if len(args) > 2 else "admin"},
        )
        account = add_user(users_file, CredentialVault(config.master_secret), new, config.email_domain)
    except FolioError as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        return 1

    console.print(f'[bold green]✓ User "{account.username}" created with role "{account.role}"[/bold green]')
    console.print(f"Users file: {users_file}")
    console.print("[yellow]Commit this file to the site repository for the account to take effect.[/yellow]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
