"""Bot configuration constants and settings."""

import os

TORN_API_KEY = os.getenv('TORN_API_KEY', '')
TORN_API_BASE = "https://api.torn.com/v2"
FACTION_ID = int(os.getenv('FACTION_ID', '41702'))
FACTION_NAME = os.getenv('FACTION_NAME', 'Fatality')
TIMEZONE = os.getenv('TIMEZONE', 'UTC')

DATABASE_PATH = os.getenv('DATABASE_PATH', 'faction_bot.db')

# Channel configuration (0 = post alerts where !monitor start was issued)
MONITOR_CHANNEL_ID = int(os.getenv('MONITOR_CHANNEL_ID', '0'))

# Target monitor defaults
DEFAULT_CHECK_INTERVAL = 20  # seconds
DEFAULT_MAX_HOSPITAL_MINUTES = 5
MAX_AVAILABLE_ALERTS = 5
HOSPITAL_STATE = "Hospital"

# Remote feed sizes
PAYOUT_NEWS_FETCH = 300
AUDIT_NEWS_FETCH = 500
NEWS_PAGE_LIMIT = 100
ATTACK_PAGE_LIMIT = 1000
ATTACK_PAGE_DELAY = 1.0  # seconds between attack log pages

# Upsert batch sizes
CONTRIBUTION_BATCH_SIZE = 20
PAYOUT_BATCH_SIZE = 50
PAYMENT_STATUS_BATCH_SIZE = 25

REPORT_PAGE_SIZE = 10
ACTIVE_BOARD_LIMIT = 50

# Member sync schedule
MEMBER_SYNC_HOUR_UTC = 22
MEMBER_SYNC_MIN_HOURS = 20

# Payment configuration fallbacks, used when the store is unreachable
DEFAULT_PAYMENT_CONFIG = {
    "min_respect": 8,
    "rw_hit_multiplier": 0.8,
    "under_respect_multiplier": 0,
    "hit_multiplier": 0,
    "assist_multiplier": 0.2,
    "payout_percentage": 85,
}

PAYMENT_CONFIG_DESCRIPTIONS = {
    "min_respect": "Minimum respect needed for a hit to count as a ranked war hit",
    "rw_hit_multiplier": "Multiplier for ranked war hits",
    "under_respect_multiplier": "Multiplier for war hits under the respect threshold",
    "hit_multiplier": "Multiplier for non-war hits (usually 0)",
    "assist_multiplier": "Multiplier for assists",
    "payout_percentage": "Percentage of the ranked war cash paid out to members",
}

EXPENSE_CATEGORIES = [
    "Upgrades", "Properties", "Items", "Weapons", "Armor",
    "Drugs", "Medical", "Temporary", "Special", "Other",
]

INCOME_CATEGORIES = [
    "Donations", "Territory", "Raid", "War", "Competition",
    "Item Sales", "Other",
]
