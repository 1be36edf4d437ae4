"""Mail transport services (IMAP in, SMTP out)."""
