"""CLI entrypoint for vaultsync."""
import os
import sys
import argparse
import logging
from pathlib import Path

from .validators import validate_email, validate_folder_name

VERSION = "0.1.0"

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _vault_from_config(args):
    """Load the credentials config and build a vault client."""
    from vaultsync.secrets.domains.config_loader import get_vault_settings, load_config
    from vaultsync.secrets.domains.vault_client import VaultClient

    project_override = getattr(args, "project_id", None) or os.getenv("GCP_PROJECT")
    settings = get_vault_settings(load_config(), project_override=project_override)
    vault = VaultClient(settings.project_id, service_account_path=settings.service_account_path)
    return vault, settings


def _project_from_args(args, require_folder=True):
    """Resolve the project config: .vaultsync.yml < flags < positional folder."""
    from vaultsync.secrets.domains.config_loader import (
        PROJECT_CONFIG_NAME,
        load_project_file,
        resolve_project_config,
    )

    folder = getattr(args, "folder", None)
    if folder is not None:
        validate_folder_name(folder)

    return resolve_project_config(
        load_project_file(PROJECT_CONFIG_NAME),
        folder=folder,
        secret_type=getattr(args, "type", None),
        env_file=getattr(args, "file", None),
        project=getattr(args, "project", None),
        team=getattr(args, "team", None),
        require_folder=require_folder,
    )


def cmd_version(args):
    """Show version information."""
    print(f"vaultsync {VERSION}")


def cmd_config_set_path(args):
    """Set config file path preference."""
    from vaultsync.secrets.domains.preferences import CONFIG_PATH, set_preference

    config_path = Path(args.path).resolve()

    if not config_path.exists():
        print(f"Error: Config file does not exist: {config_path}", file=sys.stderr)
        sys.exit(1)

    if not config_path.is_file():
        print(f"Error: Path is not a file: {config_path}", file=sys.stderr)
        sys.exit(1)

    set_preference(CONFIG_PATH, str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current config file path."""
    from vaultsync.secrets.domains.config_loader import default_config_path
    from vaultsync.secrets.domains.preferences import CONFIG_PATH, get_preference

    config_path_pref = get_preference(CONFIG_PATH)

    if config_path_pref:
        config_path = Path(config_path_pref)
        suffix = "" if config_path.exists() else " (file not found)"
        print(f"Config path: {config_path}{suffix}")
        print("Source: preference")
    else:
        default_config = default_config_path()
        suffix = "" if default_config.exists() else " (file not found)"
        print(f"Config path: {default_config}")
        print(f"Source: default{suffix}")


def cmd_config_clear(args):
    """Clear config path preference."""
    from vaultsync.secrets.domains.config_loader import default_config_path
    from vaultsync.secrets.domains.preferences import CONFIG_PATH, clear_preference

    clear_preference(CONFIG_PATH)
    print(f"Config path preference cleared. Will use default: {default_config_path()}")


def cmd_init(args):
    """Write a .vaultsync.yml project config."""
    from vaultsync.secrets.domains.config_loader import PROJECT_CONFIG_NAME, write_project_config
    from vaultsync.secrets.domains.models import ProjectConfig

    target = Path(PROJECT_CONFIG_NAME)
    if target.exists() and not args.force:
        print(f"Error: {target} already exists (use --force to overwrite)", file=sys.stderr)
        sys.exit(1)

    validate_folder_name(args.folder)
    secret_type = args.type or "dotnet"
    path = args.file if secret_type == "env" else args.project
    if secret_type == "env" and not path:
        path = ".env"

    project = ProjectConfig(folder=args.folder, type=secret_type, path=path or "", team=args.team or "")
    write_project_config(project, target)
    print(f"Configuration saved to {target}")


def cmd_pull(args):
    """Pull a vault folder into the local secrets store."""
    from vaultsync.secrets.workflows.secret_operations import pull_secrets

    project = _project_from_args(args)
    vault, settings = _vault_from_config(args)
    report = pull_secrets(vault, project, timeout=settings.timeout)

    print(f"Pulled {report.fetched} secret(s) from {report.folder}")
    if report.failed:
        print(f"Warning: {report.failed} secret(s) could not be downloaded", file=sys.stderr)


def cmd_push(args):
    """Push local secrets into a vault folder."""
    from vaultsync.secrets.workflows.secret_operations import push_secrets

    project = _project_from_args(args)
    vault, settings = _vault_from_config(args)
    report = push_secrets(vault, project, timeout=settings.timeout, create_folder=args.create_folder)

    print(f"Pushed to {project.folder}: {len(report.created)} created, {len(report.updated)} updated")


def cmd_team_list(args):
    """List members of the team group."""
    from vaultsync.secrets.workflows.secret_operations import list_team_members

    project = _project_from_args(args, require_folder=False)
    vault, _ = _vault_from_config(args)
    members = list_team_members(vault, project.team)

    print(f"Listing members for {project.team}:")
    for i, member in enumerate(members, start=1):
        role = " (manager)" if member.manager else ""
        print(f"{i}: {member.username}{role}")


def cmd_team_add(args):
    """Add a user to the team group."""
    from vaultsync.secrets.workflows.secret_operations import add_team_member

    validate_email(args.email)
    project = _project_from_args(args, require_folder=False)
    vault, _ = _vault_from_config(args)
    group = add_team_member(vault, project.team, args.email, manager=args.manager)
    print(f"Added {args.email} to {group.name}")


def cmd_migrate(args):
    """Move the project folder under the root folder and share it with the team."""
    from vaultsync.secrets.workflows.secret_operations import plan_migration, run_migration

    project = _project_from_args(args)
    vault, settings = _vault_from_config(args)
    migration = plan_migration(vault, project, root_folder=settings.root_folder)

    print(f"Migrate {project.folder} to {migration.root_folder}/{project.folder}")
    if migration.create_root:
        print(f"Create root folder: {migration.root_folder}")
    action = "Create new group" if migration.create_group else "Update group"
    print(f"{action}: {migration.team}")
    print("  With Members:")
    for i, membership in enumerate(migration.memberships, start=1):
        role = "Group Owner" if membership.manager else "Member"
        print(f"  {i}: {membership.username} ({role})")

    if not args.yes:
        print("\nDry run only. Re-run with --yes to apply the migration.")
        return

    run_migration(vault, migration)
    print("Migration complete")


def _project_flags() -> argparse.ArgumentParser:
    """Flags shared by every command that works on a project."""
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument(
        "--type",
        choices=["dotnet", "env"],
        help="Local secrets store: dotnet user-secrets or an env file (default: dotnet)"
    )
    parent.add_argument(
        "-f", "--file",
        help="Env file to use with --type env (default: .env)"
    )
    parent.add_argument(
        "-p", "--project",
        help="Path to the dotnet project with --type dotnet (default: current directory)"
    )
    parent.add_argument(
        "--team",
        help="Team group name used to share secrets"
    )
    parent.add_argument(
        "--project-id",
        help="GCP project ID (overrides GCP_PROJECT and the config file)"
    )
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="vaultsync - sync project secrets between a vault folder and local env files or dotnet user-secrets",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (authentication, network, folder not found, file errors, etc.)
  2 - Usage error (invalid arguments, invalid folder name, etc.)

Environment variables:
  GCP_PROJECT - GCP project ID (overrides config file)

Configuration:
  Credentials: ~/.config/vaultsync/config.yml (or 'vaultsync config set-path <path>')
  Project: .vaultsync.yml in the current directory (create with 'vaultsync init')
        """
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log progress information to stderr"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    project_flags = _project_flags()

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of vaultsync"
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage the location of the vaultsync credentials config"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="Store the absolute path to your config file in ~/.config/vaultsync/preferences.json"
    )
    config_set_path_parser.add_argument("path", help="Path to config file")
    config_subparsers.add_parser(
        "show",
        help="Show current config path",
        description="Display the current configuration file path and its source (preference or default)"
    )
    config_subparsers.add_parser(
        "clear",
        help="Clear config path preference",
        description="Remove the config path preference; ~/.config/vaultsync/config.yml is used afterwards"
    )

    # init command
    init_parser = subparsers.add_parser(
        "init",
        parents=[project_flags],
        help="Create a .vaultsync.yml project config",
        description="Write a .vaultsync.yml so pull and push work without arguments"
    )
    init_parser.add_argument("folder", help="Vault folder holding the project's secrets")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing .vaultsync.yml")

    # pull command
    pull_parser = subparsers.add_parser(
        "pull",
        parents=[project_flags],
        help="Pull secrets from a vault folder",
        description="""
Download every secret in the folder and save it locally.

  dotnet - sets each secret with 'dotnet user-secrets set' (the project is
           initialized for user-secrets first)
  env    - merges the secrets into the env file; comments, ordering and
           other entries are kept, new keys are appended

Example: vaultsync pull MyFolder --type env --file .env
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    pull_parser.add_argument("folder", nargs="?", help="Vault folder (default: from .vaultsync.yml)")

    # push command
    push_parser = subparsers.add_parser(
        "push",
        parents=[project_flags],
        help="Push local secrets to a vault folder",
        description="""
Upload every local secret to the folder. Existing secrets are updated and
new ones are created; secrets that only exist in the vault are left alone.

Example: vaultsync push MyFolder --project ./api
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    push_parser.add_argument("folder", nargs="?", help="Vault folder (default: from .vaultsync.yml)")
    push_parser.add_argument(
        "--create-folder",
        action="store_true",
        help="Create the vault folder if it does not exist"
    )

    # team command
    team_parser = subparsers.add_parser(
        "team",
        help="Team management",
        description="Manage the team you share secrets with"
    )
    team_subparsers = team_parser.add_subparsers(dest="team_command")
    team_subparsers.add_parser(
        "list",
        parents=[project_flags],
        help="List team members"
    )
    team_add_parser = team_subparsers.add_parser(
        "add",
        parents=[project_flags],
        help="Add a user to the team"
    )
    team_add_parser.add_argument("email", help="Email of the user to add")
    team_add_parser.add_argument(
        "-m", "--manager",
        action="store_true",
        help="Add the user as a team manager"
    )

    # migrate command
    migrate_parser = subparsers.add_parser(
        "migrate",
        parents=[project_flags],
        help="Move a project folder under the vaultsync root folder",
        description="""
Move the project folder under the root folder and build the team group from
everyone with access to the folder (owners become managers). Prints the plan
and stops unless --yes is given.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    migrate_parser.add_argument("folder", nargs="?", help="Vault folder (default: from .vaultsync.yml)")
    migrate_parser.add_argument("-y", "--yes", action="store_true", help="Apply the migration")

    return parser


def main(argv=None):
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (authentication, network, folder not found, etc.)
        2 - Usage errors (invalid arguments, invalid folder name, etc.)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)

    if not args.command:
        parser.print_help()
        sys.exit(2)

    handlers = {
        "version": cmd_version,
        "init": cmd_init,
        "pull": cmd_pull,
        "push": cmd_push,
        "migrate": cmd_migrate,
    }
    subcommands = {
        "config": ("config_command", {
            "set-path": cmd_config_set_path,
            "show": cmd_config_show,
            "clear": cmd_config_clear,
        }),
        "team": ("team_command", {
            "list": cmd_team_list,
            "add": cmd_team_add,
        }),
    }

    try:
        if args.command in handlers:
            handlers[args.command](args)
        elif args.command in subcommands:
            dest, table = subcommands[args.command]
            handler = table.get(getattr(args, dest))
            if handler is None:
                print(f"Error: '{args.command}' requires a subcommand: {', '.join(table)}", file=sys.stderr)
                sys.exit(2)
            handler(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
