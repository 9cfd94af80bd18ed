import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from xip.core.errors import InvalidParameters
from xip.core.storage.sqlite_adapter import SQLiteAdapter
from xip.crypto import to_checksum_address
from xip.utils.logger import get_logger
from xip.utils.validation import (
    parse_amount,
    validate_chain_id,
    validate_intent_id,
    validate_recipients,
)

logger = get_logger("storage.manager")


@dataclass
class RecipientManifest:
    """
    Private payout instructions for one intent.

    Invariants: len(recipients) == len(amounts) and
    sum(amounts) == total_amount.
    """
    intent_id: str
    recipients: List[str]
    amounts: List[int]
    chain_id: int
    total_amount: int
    created_at: float

    def to_dict(self) -> dict:
        return {
            "intentId": self.intent_id,
            "recipients": self.recipients,
            "amounts": [str(a) for a in self.amounts],
            "chainId": self.chain_id,
            "totalAmount": str(self.total_amount),
            "createdAt": self.created_at,
        }


class RecipientStore:
    """
    Off-chain recipient privacy store.

    Keeps payout addresses out of the on-chain intent: the user writes a
    manifest here, the winning solver reads it before delivering. Writes are
    validated; a second put for the same intent replaces the first.
    """

    def __init__(self, data_dir: Path, db_name: str = "recipients.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"RecipientStore initialized at {self.db_path}")

    @staticmethod
    def _key(intent_id: Union[int, str]) -> str:
        valid, err = validate_intent_id(intent_id)
        if not valid:
            raise InvalidParameters(err)
        return str(int(intent_id))

    def put(
        self,
        intent_id: Union[int, str],
        recipients: List[str],
        amounts: List[Union[int, str]],
        chain_id: int,
    ) -> RecipientManifest:
        """
        Validate and store a manifest.

        Raises:
            InvalidParameters: empty id, mismatched or oversized arrays,
                malformed addresses, non-positive amounts, bad chain id
        """
        key = self._key(intent_id)

        valid, err = validate_recipients(recipients, amounts)
        if not valid:
            raise InvalidParameters(err)
        valid, err = validate_chain_id(chain_id)
        if not valid:
            raise InvalidParameters(err)

        parsed = [parse_amount(a)[0] for a in amounts]
        manifest = RecipientManifest(
            intent_id=key,
            recipients=[to_checksum_address(r) for r in recipients],
            amounts=parsed,
            chain_id=chain_id,
            total_amount=sum(parsed),
            created_at=time.time(),
        )
        self.adapter.save_manifest(
            manifest.intent_id,
            manifest.chain_id,
            manifest.recipients,
            manifest.amounts,
            manifest.total_amount,
            manifest.created_at,
        )
        logger.info(f"Stored manifest for intent {key[-8:]}: {len(recipients)} recipients on chain {chain_id}")
        return manifest

    def get(self, intent_id: Union[int, str]) -> Optional[RecipientManifest]:
        row = self.adapter.get_manifest(self._key(intent_id))
        if row is None:
            return None
        return RecipientManifest(**row)

    def delete(self, intent_id: Union[int, str]) -> bool:
        deleted = self.adapter.delete_manifest(self._key(intent_id))
        if deleted:
            logger.info(f"Deleted manifest for intent {str(intent_id)[-8:]}")
        return deleted

    def list(self) -> List[str]:
        """Intent ids with a manifest, oldest first."""
        return self.adapter.list_manifest_ids()

    def __len__(self) -> int:
        return self.adapter.count_manifests()

    def close(self):
        self.adapter.close()
