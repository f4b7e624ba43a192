"""
Legacy mailbox import.

Extracts document attachments from archived mailboxes (mbox, PST/OST),
filters out scanned, duplicate and administrative documents, and shares
the rest among human categorizers before a snapshot-guarded export.
"""

__version__ = "0.1.0"
