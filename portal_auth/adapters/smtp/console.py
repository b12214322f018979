"""
Console email sender adapter - Implements EmailSender protocol.

This module provides a console-based implementation of the domain's
email sender port, logging templated messages to stdout for development.
"""

import logging

from portal_auth.domain.ports import EmailMessage

logger = logging.getLogger(__name__)


class ConsoleEmailSender:
    """
    Implements EmailSender protocol via console logging.

    Uses structural subtyping - no explicit inheritance from Protocol.
    For demo/development purposes - template rendering and SMTP delivery
    belong to a separate mail service.
    """

    def send(self, message: EmailMessage) -> None:
        """
        Log a templated message (simulates email delivery).

        The message is logged at INFO level so tokens and TFA codes are
        visible in development logs.

        Args:
            message: Template id, recipient, language and template data
        """
        fields = " ".join(f"{key}={value}" for key, value in sorted(message.data.items()))
        logger.info(
            "[EMAIL:%s] To: %s Lang: %s %s",
            message.template.value,
            message.to,
            message.language,
            fields,
        )
