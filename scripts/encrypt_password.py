"""Encrypt a password for data/users.json or the ADMIN_USERS variable"""

import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from folio.auth.crypto import CredentialVault
from folio.core.config import load_config
from folio.utils.exceptions import ConfigError

console = Console()


def main() -> int:
    if len(sys.argv) != 2:
        console.print("[red]Usage: python scripts/encrypt_password.py <password>[/red]")
        return 1

    load_dotenv()
    config = load_config()
    try:
        vault = CredentialVault(config.master_secret)
    except ConfigError as e:
        console.print(f"[bold red]✗ {e}[/bold red]")
        return 1

    record = vault.encrypt(sys.argv[1])
    console.print(Panel(record, title="encryptedPassword", border_style="green"))
    console.print("[dim]Use it in data/users.json or as ADMIN_USERS=username:<value>:role[/dim]")
    console.print("[yellow]The record only decrypts with the same ADMIN_PASSWORD.[/yellow]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
