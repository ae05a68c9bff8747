"""Application constants for outreach, conversations and dispositions."""

# CRM tags
OUTREACH_TAG = "AI-Outreach"
HANDOFF_TAG = "Ready-For-Human-Contact"
DNC_TAG = "DNC"
WRONG_CONTACT_TAG = "Wrong-Contact-Info"

# Opportunity disposition written once the touch ceiling is reached
DIRECT_MAIL_DISPOSITION = "Direct Mail Campaign"

# Contact type that never receives AI conversations
DIRECT_MAIL_CONTACT_TYPE = "direct mail"

# Lead types that the AI agent is allowed to work (compared lowercase)
AI_ENABLED_LEAD_TYPES = frozenset(
    {
        "probate",
        "pre-probate",
        "preforeclosure",
        "pre-foreclosure",
        "pre foreclosure",
        "foreclosure",
    }
)

ORGANIC_LEAD_MEDIUM = "facebook"

# Disposition outcomes that suppress every sibling contact
STOP_DISPOSITIONS = frozenset(
    {
        "not interested",
        "incorrect number",
        "wrong number / disconnected / invalid number",
        "listed with realtor",
        "sold already",
        "dnc",
    }
)

# Outcome recorded when an inbound reply asks to stop
STOP_REPLY_OUTCOME = "Not Interested"

HANDOFF_REPLY = (
    "Great! I'll have one of our property specialists reach out to you within "
    "the next few hours to discuss your options. Thanks for your interest!"
)

# Business hours (local to BUSINESS_TIMEZONE, end-exclusive)
BUSINESS_HOURS_START = 9
WEEKDAY_HOURS_END = 19
SATURDAY_HOURS_END = 12
