"""Cloud backends. Each subpackage provides one EnvironProvider."""
