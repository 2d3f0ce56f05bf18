"""User-facing reply texts.

Randomized families go through ReplyChooser so tests can pin the choice with a seed.
"""

import random
from typing import Optional, Sequence

from amana.services.intent_service import Intent
from amana.services.matching import normalize_for_matching


class ReplyChooser:
    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)

    def choose(self, options: Sequence[str]) -> str:
        if not options:
            raise ValueError("No reply options")
        return options[self._random.randrange(len(options))]


HELP_MENU = """🚚 *Amana - Your Transport Business Assistant*

I be Amana (meaning "trust" 🤝), your helper for transport & logistics!

*✅ Wetin I Fit Do:*

📄 *Invoices*
• "Create invoice for [Client], [Items] at [Price]"
• "Preview invoice INV-202510-0001"
• "Send invoice INV-202510-0001"
• "List invoices"

👤 *Clients*
• "Add client [Name], email [Email], phone [Phone]"
• "List clients"

💰 *Wallet*
• "What's my balance?"
• "Show transactions"

🚚 *Routes & Fleet*
• "List routes"
• "List drivers"
• "List vehicles"

*🎤 Voice Notes:*
Send voice messages in English, Hausa, Igbo, Yoruba or Nigerian Pidgin.

Type "HELP" anytime to see this menu again.

How I fit help you today? 🚀"""

HELP_HISTORY_TEXT = "Sent help menu"

UNSUPPORTED_MESSAGE_TYPE = "Sorry, I can only process text and voice messages at the moment."
GENERIC_APOLOGY = "Sorry, I encountered an error processing your message. Please try again."
ONBOARDING_MESSAGE = (
    "👋 Welcome to Amana!\n\n"
    "This WhatsApp number is not linked to a business account yet.\n\n"
    "Link it from your dashboard settings, then send \"menu\" to get started."
)

# Acknowledgements sent before a handler runs.
ACKNOWLEDGEMENTS: dict[Intent, tuple[str, ...]] = {
    Intent.LIST_ROUTES: (
        "🚚 Let me check your routes... ⏳",
        "🚚 One second, pulling up your routes... ⏳",
        "🚚 Getting your routes ready... ⏳",
    ),
    Intent.VIEW_ROUTE: (
        "🔍 Looking up that route for you... ⏳",
        "🔍 Checking the route details... ⏳",
        "🔍 Let me find that route... ⏳",
    ),
    Intent.UPDATE_ROUTE_STATUS: ("✅ Updating route status... ⏳", "✅ Making that change now... ⏳"),
    Intent.ADD_ROUTE_EXPENSE: ("💰 Recording the expense... ⏳", "💰 Adding that expense now... ⏳"),
    Intent.LIST_DRIVERS: (
        "👥 Checking your drivers... ⏳",
        "👥 Let me get the driver list... ⏳",
        "👥 Pulling up driver info... ⏳",
    ),
    Intent.DRIVER_LOCATION: (
        "📍 Tracking driver location... ⏳",
        "📍 Let me see where they dey... ⏳",
        "📍 Checking GPS now... ⏳",
    ),
    Intent.DRIVER_SALARY: ("💵 Checking salary details... ⏳", "💵 Let me pull up the payroll... ⏳"),
    Intent.LIST_VEHICLES: ("🚗 Checking your fleet... ⏳", "🚗 Getting vehicle list... ⏳"),
    Intent.VEHICLE_LOCATION: ("📍 Tracking vehicle... ⏳", "📍 Locating that vehicle... ⏳"),
    Intent.LIST_INVOICES: ("📄 Pulling up your invoices... ⏳", "📄 Checking invoice records... ⏳"),
    Intent.PREVIEW_INVOICE: (
        "👀 Generating invoice preview... ⏳",
        "📋 Let me show you how it looks... ⏳",
        "✨ Preparing invoice preview... ⏳",
    ),
    Intent.SEND_INVOICE: ("📧 Preparing to send invoice... ⏳", "📨 Getting invoice ready... ⏳"),
    Intent.OVERDUE_INVOICES: ("⚠️ Checking for overdue invoices... ⏳", "⚠️ Let me see who never pay... ⏳"),
    Intent.RECORD_PAYMENT: ("💰 Recording payment... ⏳", "💰 Updating invoice status... ⏳"),
    Intent.VIEW_BALANCE: ("💰 Checking your wallet... ⏳", "💰 Let me see your balance... ⏳"),
    Intent.LIST_TRANSACTIONS: ("💳 Getting transaction history... ⏳", "💳 Checking your transactions... ⏳"),
    Intent.TRANSFER_TO_DRIVER: ("💸 Processing transfer... ⏳", "💸 Sending money now... ⏳"),
    Intent.LIST_CLIENTS: ("👥 Getting your client list... ⏳", "👥 Checking client records... ⏳"),
    Intent.VIEW_CLIENT: ("🔍 Looking up client details... ⏳", "🔍 Checking client info... ⏳"),
    Intent.LIST_PAYROLL: ("💵 Checking payroll records... ⏳", "💵 Getting salary information... ⏳"),
    Intent.REVENUE_SUMMARY: ("📊 Calculating revenue... ⏳", "📊 Checking how much you don make... ⏳"),
    Intent.EXPENSE_SUMMARY: ("📊 Calculating expenses... ⏳", "📊 Checking how much you don spend... ⏳"),
}
DEFAULT_ACKNOWLEDGEMENTS = (
    "⏳ Got it! Let me check that for you...",
    "⏳ One moment please...",
    "⏳ Working on it...",
)


def acknowledgement_options(intent: Intent) -> tuple[str, ...]:
    return ACKNOWLEDGEMENTS.get(intent, DEFAULT_ACKNOWLEDGEMENTS)


# Out-of-scope families
GREETING_WORDS = ("hi", "hello", "hey", "good morning", "good afternoon", "good evening", "sup", "yo")
CHITCHAT_KEYWORDS = ("how are you", "what's up", "weather", "football", "politics", "joke", "story")
CHITCHAT_CONFIDENCE_CEILING = 0.3

GREETING_REPLIES = (
    "Hey there! 👋\n\nI'm Amana, your transport business assistant. I can help you with:\n\n"
    "✅ Create invoices\n✅ Manage clients\n✅ Track routes & drivers\n✅ Check wallet balance\n\n"
    "What would you like to do today?",
    "Hello! 😊\n\nGreat to hear from you! I'm here to help manage your transport business.\n\n"
    'Type "HELP" to see everything I can do, or just tell me what you need!',
    "Hi! 🚚\n\nReady to help with your logistics needs!\n\n"
    "Some quick options:\n• Create invoice\n• List routes\n• Check balance\n\nWhat's on your mind?",
)
CHITCHAT_REPLIES = (
    "I appreciate the chat! 😊 But I'm focused on helping with your transport business.\n\n"
    "I can help with:\n• Invoices & payments\n• Route tracking\n• Driver management\n• Client records\n\n"
    "What business task can I assist with?",
    "Haha, I'd love to chat about that! 😄 But I'm specifically built for logistics management.\n\n"
    "Let me help you with something business-related:\n• Create an invoice?\n• Check your wallet?\n"
    "• Track a route?\n\nWhat do you need?",
    "That's interesting! 🤔 But I'm best at handling transport & logistics tasks.\n\n"
    'Try asking me to:\n• "Create invoice for XYZ"\n• "Show my routes"\n• "List clients"\n\n'
    'Or type "HELP" for all options!',
)
UNCLEAR_REPLIES = (
    "Hmm, I'm not quite sure what you mean. 🤔\n\nCould you rephrase that? Or here are some things I can do:\n\n"
    '✅ "Create invoice for ABC Ltd"\n✅ "Show my drivers"\n✅ "What\'s my balance"\n\n'
    'Type "HELP" for the full menu!',
    "I didn't quite catch that. 😅\n\nTry being more specific, like:\n"
    '• "List my clients"\n• "Create professional invoice"\n• "Show active routes"\n\n'
    'Or type "HELP" to see all commands!',
    "Sorry, I'm not sure how to help with that. 🤷\n\nI'm great at:\n"
    "📄 Managing invoices\n🚚 Tracking routes\n👥 Client records\n💰 Wallet & payments\n\n"
    "What would you like to do?",
)


def _contains_word(normalized: str, phrase: str) -> bool:
    return f" {phrase} " in f" {normalized} "


def out_of_scope_family(text: str, confidence: float) -> str:
    """greeting, chitchat or unclear."""
    normalized = normalize_for_matching(text)
    if any(_contains_word(normalized, word) for word in GREETING_WORDS):
        return "greeting"
    if any(keyword in normalized for keyword in CHITCHAT_KEYWORDS) or confidence < CHITCHAT_CONFIDENCE_CEILING:
        return "chitchat"
    return "unclear"


OUT_OF_SCOPE_REPLIES = {
    "greeting": GREETING_REPLIES,
    "chitchat": CHITCHAT_REPLIES,
    "unclear": UNCLEAR_REPLIES,
}


def out_of_scope_reply(text: str, confidence: float, chooser: ReplyChooser) -> str:
    return chooser.choose(OUT_OF_SCOPE_REPLIES[out_of_scope_family(text, confidence)])


def retry_replies(last_error: str) -> tuple[str, ...]:
    return (
        f"Ah, let me try that again! 🔄\n\nWhat went wrong: {last_error}\n\n"
        'Could you give me the details one more time?\n\nOr type "HELP" if you need guidance.',
        f"No wahala! Let's fix this together. 💪\n\nThe issue was: {last_error}\n\n"
        "Please share the details again and I'll get it right this time!",
        f"Sorry about that! 😅\n\nProblem: {last_error}\n\nLet's try again - what would you like me to do?",
    )


def handler_failure_reply(error: str) -> str:
    return f"😅 {error}\n\nType *try again* and I go sort am, or type *menu* for other options."


def not_supported_reply(intent: Intent) -> str:
    feature_name = intent.value.replace("_", " ")
    return (
        f'I hear you! 👂\n\nThe "{feature_name}" feature dey come soon. Our developers dey work on am. 🔨\n\n'
        "For now, I fit help you with:\n\n✅ Create invoices\n✅ Add clients\n✅ Check wallet balance\n\n"
        "Type *HELP* to see full menu."
    )


FOLLOW_UP_CANCELLED = "No problem! Operation cancelled. ✋\n\nWhat else can I help you with?"


def another_invoice_prompt(counterparty_name: str) -> str:
    return (
        f"📋 *Creating another invoice for {counterparty_name}*\n\n"
        'What items are on this invoice?\n\n💡 Example: "50 cement bags at 5000 naira each"'
    )


# Confirmation flow
def confirmed_reply(artifact_id: Optional[str], counterparty_name: Optional[str]) -> str:
    recipient = counterparty_name or "your client"
    return (
        f"✅ *Invoice Confirmed!*\n\n📄 Invoice {artifact_id} is ready.\n📊 Status: Draft\n\n"
        f'*What\'s next?*\n📧 Type "send" to email it to {recipient}\n'
        '📋 Type "another" to create another invoice\n🏠 Type "menu" for more options'
    )


def sending_reply(artifact_id: Optional[str], counterparty_name: Optional[str]) -> str:
    return f"📧 Sending invoice {artifact_id} to {counterparty_name or 'your client'}..."


def cancelled_reply(artifact_id: Optional[str]) -> str:
    return (
        f"❌ Invoice {artifact_id} cancelled.\n\n"
        "The invoice is still saved in your dashboard as Draft. You can edit or delete it there if needed.\n\n"
        '💡 Type "menu" to see what else I can help with.'
    )


def edit_prompt(artifact_id: Optional[str]) -> str:
    return (
        f"✏️ *Edit Invoice {artifact_id}*\n\nWhat would you like to change?\n\n💡 *Examples:*\n"
        '• "change total to 500000"\n• "update client name to XYZ Corp"\n'
        '• "add item: delivery fee 5000"\n• "remove vat"\n\n'
        "_Or describe the change in your own words - I'll understand!_ 😊"
    )


# Voice pipeline
def transcript_echo(transcript: str) -> str:
    return f'🎤 *I don hear you loud and clear!*\n\n"{transcript}"\n\nLet me help you with that... ⏳'


VOICE_ERROR_REPLIES = {
    "empty_audio": (
        "🎤 *Voice note no clear o!* 😅\n\nThe audio too quiet or no clear well. Make you:\n\n"
        "1️⃣ Talk louder and clear\n2️⃣ Reduce background noise\n3️⃣ Hold phone closer\n"
        "4️⃣ Or just type your message 💬\n\nI dey wait!"
    ),
    "corrupted_audio": (
        "😅 *The voice note no complete o!*\n\nE be like say the audio file corrupt or too short.\n\n"
        "Make you record am again, or just type wetin you wan talk. I go understand! 💬"
    ),
    "network": (
        "⚠️ *Network problem o!*\n\nI no fit process that voice note because network slow.\n\n"
        "Make you:\n1️⃣ Try again (might work now)\n2️⃣ Or just type your message 💬\n\nI dey wait for you!"
    ),
    "download_failed": (
        "😅 *E be like say I no fit download that voice note o.*\n\n"
        "Please try again, or just type your message for me. I go understand am better! 💬"
    ),
    "unknown": (
        "😅 *Something went wrong with that voice note o!*\n\n"
        "Make you try again, or just type your message for me.\n\nI fit understand text messages better! 💬"
    ),
}
