"""
HTTP clients for the remote mail API.
"""
from codegate.client.base import BaseClient
from codegate.client.mail import MailApiClient, OAuthClient

__all__ = ["BaseClient", "MailApiClient", "OAuthClient"]
