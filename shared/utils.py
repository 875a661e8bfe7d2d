"""
shared/utils.py

Shared utility functions used across multiple modules.

This module contains common helpers (identifier generation, clock access, log-friendly
truncation, and localized fallback replies) used by the store, the dispatcher, and the
API layer so that these details stay consistent across the router.
"""

import uuid
import datetime


def generate_thread_id() -> str:
    """
    Generate a globally unique thread identifier.

    Returns:
        str: An identifier of the form "thread_<32 hex chars>" built from a UUID4.
    """
    return f"thread_{uuid.uuid4().hex}"

def generate_message_id() -> str:
    """
    Generate a globally unique message identifier.

    Returns:
        str: An identifier of the form "msg_<32 hex chars>" built from a UUID4.
    """
    return f"msg_{uuid.uuid4().hex}"

def utc_now() -> datetime.datetime:
    """Timezone-aware current time in UTC; the default clock of the thread store."""
    return datetime.datetime.now(datetime.timezone.utc)

def truncate_message_for_logging(message: str, max_length: int = 100) -> str:
    """
    Truncate long messages for logging purposes.

    Args:
        message (str): Message to truncate
        max_length (int): Maximum length before truncation (default: 100)

    Returns:
        str: Truncated message with ellipsis if needed

    Used for logging to avoid extremely long log entries while preserving
    the beginning of the message for debugging purposes.
    """
    if len(message) <= max_length:
        return message
    return message[:max_length] + "..."

FALLBACK_REPLIES = {
    "en": "I apologize, but I encountered an error processing your request. Please try again or contact the front desk for assistance.",
    "es": "Lo siento, pero ocurrió un error al procesar tu solicitud. Por favor, inténtalo de nuevo o contacta con la recepción.",
    "fr": "Je suis désolé, une erreur s'est produite lors du traitement de votre demande. Veuillez réessayer ou contacter la réception.",
    "de": "Entschuldigung, bei der Bearbeitung Ihrer Anfrage ist ein Fehler aufgetreten. Bitte versuchen Sie es erneut oder wenden Sie sich an die Rezeption.",
    "it": "Mi dispiace, si è verificato un errore durante l'elaborazione della tua richiesta. Riprova o contatta la reception.",
    "pt": "Desculpe, ocorreu um erro ao processar o seu pedido. Por favor, tente novamente ou contacte a receção.",
}

def get_fallback_reply(language: str = "en") -> str:
    """
    Return the guest-safe apology shown when a flow handler fails.

    Args:
        language (str): Language code detected for the message, e.g. "en" or "pt-BR".
            Only the primary subtag is considered.

    Returns:
        str: The localized apology, or the English one for unsupported languages.
    """
    primary = (language or "en").split("-")[0].split("_")[0].lower()
    return FALLBACK_REPLIES.get(primary, FALLBACK_REPLIES["en"])
