"""arkv — archive files to one or more remote servers over SFTP."""

__version__ = "0.1.0"
