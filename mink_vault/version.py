"""Mink Vault Meta information.
   Mink Vault keeps notes and bookmarks encrypted under a per-user key
   derived from the user's password on every request.
"""
__title__ = 'mink_vault'
__description__ = (
   'Zero-knowledge encrypted notes and bookmarks vault with '
   'password-derived per-request keys.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Mink Vault contributors'
__author__ = 'Mink Vault contributors'
__author_email__ = 'dev@minkvault.org'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/minkvault/mink-vault'
