"""
Importance filter prompt for payment-gateway (merchant) mail.
"""

IMPORTANCE_PROMPT = """Analyze this email and determine if it's IMPORTANT for a payment gateway application or just promotional/spam.

Email Subject: {subject}
Email Content: {body}

IMPORTANT emails include:
- Application status updates
- Document/KYC requests
- Account approval/rejection
- Integration instructions
- Follow-up on application
- Verification needed
- Important notifications

SKIP (promotional) emails include:
- Marketing offers
- Product announcements
- Newsletters
- General updates
- Promotional content
- Event invitations

Respond with ONLY one word: "IMPORTANT" or "SKIP\""""
