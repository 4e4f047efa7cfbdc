"""
Compliance task intake for property management agencies.

An email-driven pipeline that:
- Receives inbound mail (IMAP watcher, date-range backfill, Resend webhook)
- Extracts property addresses and tenant contacts from the body
- Resolves the sender to an agency and acting user
- Creates Property / Task / Contact / Email records without duplication

plus a daily job that advances task status by due date.
"""
