"""Input validation for CLI arguments."""
import re
import sys

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def validate_folder_name(name: str) -> None:
    """
    Validate a vault folder name.

    Folder names are free text but must not be blank or contain control
    characters.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not name or not name.strip():
        print("Error: Folder name cannot be empty", file=sys.stderr)
        sys.exit(2)

    if any(ord(ch) < 32 for ch in name):
        print(f"Error: Invalid folder name {name!r}", file=sys.stderr)
        print("\nFolder names cannot contain control characters (tabs, newlines, etc.)", file=sys.stderr)
        sys.exit(2)


def validate_email(email: str) -> None:
    """
    Validate a user email address.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not re.match(EMAIL_PATTERN, email or ""):
        print(f"Error: Invalid email address '{email}'", file=sys.stderr)
        print("\nExamples of valid addresses:", file=sys.stderr)
        print("  ✓ alice@example.com", file=sys.stderr)
        print("  ✓ ci-bot@project.iam.gserviceaccount.com", file=sys.stderr)
        sys.exit(2)
