"""Reply detection across a conversation.

Objective:
    Decide whether a message still needs attention by checking whether any
    later message exists in the same conversation, in either the Inbox or
    Sent Items.

Algorithm:
    1. Fetch the original message's ``conversationId``, ``internetMessageId``
       and ``receivedDateTime``. Missing fields or a failed fetch mean "not
       replied".
    2. For each searched folder, page through the conversation.
    3. The first message received strictly after the original counts as a
       reply.

    A message that was re-sent or re-received later is indistinguishable
    from a reply and is treated as one: any later event in the thread clears
    the need to follow up.

High-level call tree:
    - :meth:`ReplyDetector.has_been_replied_to`
        - :meth:`EmailClient.get_message`
        - :meth:`ReplyDetector._folder_has_later_message`
            - :meth:`EmailClient.iter_conversation_messages`
"""

import logging
from datetime import datetime

import requests

from .email_client import INBOX_FOLDER, SENT_FOLDER, EmailClient

logger = logging.getLogger(__name__)

ORIGINAL_SELECT = "conversationId,internetMessageId,receivedDateTime"


class ReplyDetector:
    """
    Detects later activity in a message's conversation.

    Attributes:
        email_client: Graph client used for lookups.
        folders: Folders searched, in order.
        page_size: Page size for conversation searches.
    """

    def __init__(
        self,
        email_client: EmailClient,
        folders: tuple[str, ...] = (INBOX_FOLDER, SENT_FOLDER),
        page_size: int = 50,
    ) -> None:
        self.email_client = email_client
        self.folders = folders
        self.page_size = page_size

    def has_been_replied_to(self, message_id: str) -> bool:
        """
        Return True if a later message exists in the conversation.

        Never raises for Graph failures: a failed metadata fetch returns
        False, and a failed folder search moves on to the next folder.

        Args:
            message_id: Message to check.

        Returns:
            bool: Whether a reply (any later message) was found.
        """
        logger.debug("Checking reply status for message %s", message_id)

        try:
            original = self.email_client.get_message(message_id, select=ORIGINAL_SELECT)
        except requests.RequestException as e:
            logger.error(f"Failed to fetch original message {message_id}: {e}")
            return False
        except ValueError as e:
            # Graph returned a payload that does not validate as a message
            logger.error(f"Unusable original message {message_id}: {e}")
            return False

        if not (original.conversation_id and original.internet_message_id and original.received_date_time):
            logger.warning(
                "Message %s is missing internetMessageId, receivedDateTime or conversationId",
                message_id,
            )
            return False

        for folder in self.folders:
            if self._folder_has_later_message(folder, original.conversation_id, original.received_date_time):
                logger.info("Reply found for message %s in %s", message_id, folder)
                return True

        logger.debug("No reply found for message %s", message_id)
        return False

    def _folder_has_later_message(
        self,
        folder: str,
        conversation_id: str,
        original_received: datetime,
    ) -> bool:
        """Scan one folder's slice of the conversation.

        Args:
            folder: Folder to search.
            conversation_id: Conversation to search.
            original_received: Timestamp of the original message.

        Returns:
            bool: True as soon as a later message is seen.
        """
        logger.debug("Searching %s for replies in conversation", folder)
        try:
            for message in self.email_client.iter_conversation_messages(
                folder,
                conversation_id,
                page_size=self.page_size,
            ):
                received = message.received_date_time
                if received is None:
                    continue
                if received > original_received:
                    return True
        except requests.RequestException as e:
            logger.error(f"Failed to fetch messages from {folder}: {e}")
        return False
