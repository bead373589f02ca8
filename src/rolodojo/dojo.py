"""The summoning pipeline: text in, audited facts out."""

import logging
import sqlite3
import time
from dataclasses import dataclass, field, replace

from .errors import AttributeNotFoundError, DojoError
from .extraction import Extraction, RuleExtractor
from .ledger import (
    Attribute,
    AttributeHistoryEntry,
    LedgerStore,
    Record,
    Rolo,
    RoloKind,
    RoloMetadata,
    SenseiResponse,
    Triple,
    is_sensitive_key,
)
from .logging import JSONLLogger
from .query import QueryAnswer, QueryResolver, format_key
from .sensei import ParsingContext, SenseiOrchestrator, SynthesisResult, rule_based_summary
from .sensei.orchestrator import FALLBACK_SYNTHESIS_CONFIDENCE
from .sensei.parsing import rule_based_synthesis
from .uri import Namespace

logger = logging.getLogger(__name__)

DEFAULT_TRIGGER = "Manual_Entry"
DELETE_TRIGGER = "Manual_Delete"
SYNTHESIS_TRIGGER = "Synthesis"

UNABLE_TO_EXTRACT_MESSAGE = "Input recorded. Unable to extract structured data."


@dataclass(frozen=True)
class SummoningResult:
    """Everything one summoning produced.

    Attributes:
        rolo: The ledger entry written for the input.
        extraction: What the extractor made of the text.
        record: The registry entry touched, if a fact was stored.
        attribute: The vault entry written, if a fact was stored.
        created_new_record: True if the registry entry is new.
        message: Human-readable outcome.
        answer: The resolver's reply when the input was a question.
        response: The stored reply row, if it could be saved.
    """

    rolo: Rolo
    extraction: Extraction
    record: Record | None = None
    attribute: Attribute | None = None
    created_new_record: bool = False
    message: str = ""
    answer: QueryAnswer | None = None
    response: SenseiResponse | None = None


@dataclass(frozen=True)
class SearchResults:
    rolos: list[Rolo] = field(default_factory=list)
    records: list[Record] = field(default_factory=list)
    attributes: list[Attribute] = field(default_factory=list)


class DojoService:
    """Coordinates extraction, storage and question answering.

    Every summoning writes exactly one ledger entry first. Facts are written
    to the registry and vault afterwards, pointing back at that entry.
    Questions are answered read-only.
    """

    def __init__(
        self,
        store: LedgerStore,
        sensei: SenseiOrchestrator | None = None,
        resolver: QueryResolver | None = None,
        event_logger: JSONLLogger | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            store: Ledger, registry and vault storage.
            sensei: Model-assisted extractor; rules only if None.
            resolver: Question answering; built on ``store`` if None.
            event_logger: Optional JSONL event sink.
        """
        self.store = store
        self.sensei = sensei
        self.extractor = sensei.extractor if sensei is not None else RuleExtractor()
        self.resolver = resolver or QueryResolver(store)
        self.event_logger = event_logger

    async def close(self) -> None:
        if self.sensei is not None:
            await self.sensei.close()
        self.store.close()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def extract(self, text: str) -> Extraction:
        """Run the rules, then the model when the rules fall short."""
        return await self._assist(text, self.extractor.extract(text))

    async def _assist(self, text: str, rule: Extraction) -> Extraction:
        if self.sensei is None or rule.is_complete or not text.strip():
            return rule
        return await self.sensei.parse_input(text, self._parsing_context(rule))

    def _parsing_context(self, extraction: Extraction) -> ParsingContext:
        recent = self.store.get_recent_rolos(limit=5)
        targets: list[str] = []
        for rolo in recent:
            if rolo.target_uri and rolo.target_uri not in targets:
                targets.append(rolo.target_uri)

        hint = str(extraction.subject_uri) if extraction.subject_uri else None
        known_keys: tuple[str, ...] = ()
        if hint:
            known_keys = tuple(a.key for a in self.store.get_attributes(hint)[:8])

        return ParsingContext(
            subject_uri_hint=hint,
            recent_summonings=tuple(r.summoning_text for r in recent),
            recent_target_uris=tuple(targets[:5]),
            known_attribute_keys=known_keys,
        )

    async def process_summoning(
        self, text: str, metadata: RoloMetadata | None = None
    ) -> SummoningResult:
        """Process one unit of user input.

        Args:
            text: Raw user input.
            metadata: Context to store with the ledger entry.

        Returns:
            The ledger entry, the extraction, any stored fact, and a message.
            Endpoint failures and unparsable text never raise here. The
            message is also stored as the reply to the ledger entry.
        """
        rule = self.extractor.extract(text)
        extraction = await self._assist(text, rule)
        result = self._summon(text, extraction, metadata)
        response = self._record_reply(result, from_model=extraction != rule)
        return replace(result, response=response)

    def _summon(
        self, text: str, extraction: Extraction, metadata: RoloMetadata | None
    ) -> SummoningResult:
        answer: QueryAnswer | None = None
        if extraction.is_question:
            answer = self.resolver.answer(text)
            kind = RoloKind.REQUEST
            target = answer.subject_uri
        else:
            kind = RoloKind.INPUT
            target = str(extraction.subject_uri) if extraction.subject_uri else None

        metadata = metadata or RoloMetadata()
        rolo = self.store.record_summoning(
            text,
            replace(
                metadata,
                trigger=metadata.trigger or DEFAULT_TRIGGER,
                confidence_score=extraction.confidence,
            ),
            kind=kind,
            target_uri=target,
        )
        if self.event_logger:
            self.event_logger.log_summoning(
                rolo.id,
                kind.value,
                subject_uri=target,
                confidence=extraction.confidence,
                trigger=rolo.metadata.trigger,
            )

        if answer is not None:
            return SummoningResult(
                rolo=rolo, extraction=extraction, message=answer.message, answer=answer
            )

        if not extraction.is_complete:
            return SummoningResult(rolo=rolo, extraction=extraction, message=UNABLE_TO_EXTRACT_MESSAGE)

        return self._store_fact(rolo, extraction)

    def _record_reply(self, result: SummoningResult, from_model: bool) -> SenseiResponse | None:
        """Keep the reply next to the input it answers.

        Provider and model are recorded only when the model shaped the
        extraction.
        """
        provider = model = None
        if from_model and self.sensei is not None:
            provider = self.sensei.provider.value
            model = self.sensei.health.value.resolved_model
        try:
            return self.store.record_sensei_response(
                result.rolo.id,
                result.message,
                target_uri=result.rolo.target_uri,
                provider=provider,
                model=model,
                confidence_score=result.extraction.confidence,
            )
        except (DojoError, sqlite3.Error) as e:
            logger.error("Failed to store reply for rolo %s: %s", result.rolo.id, e)
            return None

    def get_replies(self, rolo_id: str) -> list[SenseiResponse]:
        """Replies given to a ledger entry, newest first."""
        return self.store.get_sensei_responses(rolo_id)

    def _store_fact(self, rolo: Rolo, extraction: Extraction) -> SummoningResult:
        assert extraction.subject_uri is not None
        assert extraction.attribute_key is not None
        assert extraction.attribute_value is not None

        subject_name = extraction.subject_name or extraction.subject_uri.display_name
        key = extraction.attribute_key
        triple = Triple(
            subject_uri=extraction.subject_uri,
            subject_name=subject_name,
            key=key,
            value=extraction.attribute_value,
            is_sensitive=is_sensitive_key(key),
        )

        try:
            applied = self.store.apply_extraction(triple, rolo.id)
        except (DojoError, sqlite3.Error) as e:
            logger.error("Failed to store fact from rolo %s: %s", rolo.id, e)
            if self.event_logger:
                self.event_logger.log_extraction(
                    rolo.id,
                    str(triple.subject_uri),
                    key,
                    created_record=False,
                    confidence=extraction.confidence,
                    error=str(e),
                )
            return SummoningResult(
                rolo=rolo,
                extraction=extraction,
                message="Input recorded, but the fact could not be saved.",
            )

        if self.event_logger:
            self.event_logger.log_extraction(
                rolo.id,
                applied.record.uri,
                key,
                created_record=applied.created_record,
                confidence=extraction.confidence,
            )

        if applied.created_record:
            message = f"Created {subject_name} with {format_key(key)}: {triple.value}"
        else:
            message = f"Updated {subject_name}'s {format_key(key)} to {triple.value}"

        return SummoningResult(
            rolo=rolo,
            extraction=extraction,
            record=applied.record,
            attribute=applied.attribute,
            created_new_record=applied.created_record,
            message=message,
        )

    async def delete_attribute(self, uri: str, key: str) -> Attribute:
        """Soft-delete a fact under a new deletion ledger entry.

        Raises:
            AttributeNotFoundError: If the subject has no such key.
        """
        if self.store.get_attribute(uri, key) is None:
            raise AttributeNotFoundError(f"No attribute {key!r} for {uri}")

        rolo = self.store.record_summoning(
            f"Delete {key} from {uri}",
            RoloMetadata(trigger=DELETE_TRIGGER),
            target_uri=uri,
        )
        attribute = self.store.soft_delete(uri, key, rolo.id)
        if self.event_logger:
            self.event_logger.log_soft_delete(rolo.id, uri, key)
        logger.info("Soft-deleted %s from %s (rolo %s)", key, uri, rolo.id)
        return attribute

    # ------------------------------------------------------------------
    # Derived entries
    # ------------------------------------------------------------------

    async def synthesize(self, uri: str) -> Rolo | None:
        """Write a SYNTHESIS ledger entry with an insight about a subject.

        Sensitive values are never sent to the model.

        Returns:
            The new ledger entry, or None when there is nothing to say.
        """
        attributes = self.store.get_attributes(uri)
        facts = {a.key: a.value or "" for a in attributes if not a.is_sensitive}
        if not facts:
            return None
        secrets = [a.value for a in attributes if a.is_sensitive and a.value]
        recent = [
            r.summoning_text
            for r in self.store.get_rolos_by_target(uri)[:5]
            if not any(secret in r.summoning_text for secret in secrets)
        ]

        started = time.perf_counter()
        if self.sensei is not None:
            result = await self.sensei.synthesize(uri, facts, recent)
        else:
            text = rule_based_synthesis(uri, facts, recent)
            result = SynthesisResult(text, FALLBACK_SYNTHESIS_CONFIDENCE if text else 0.0)
        if not result.text:
            return None

        record = self.store.get_record(uri)
        rolo = self.store.record_summoning(
            result.text,
            RoloMetadata(trigger=SYNTHESIS_TRIGGER, confidence_score=result.confidence),
            kind=RoloKind.SYNTHESIS,
            target_uri=uri,
            parent_rolo_id=record.last_rolo_id if record else None,
        )
        if self.event_logger:
            self.event_logger.log_synthesis(
                rolo.id,
                uri,
                result.confidence,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
        return rolo

    async def ghost_rolo(self, rolo_id: str, max_length: int = 50) -> Rolo | None:
        """Replace a ledger entry's text with a short summary.

        Returns:
            The updated entry, the unchanged entry if it is already short,
            or None if it does not exist.
        """
        rolo = self.store.get_rolo(rolo_id)
        if rolo is None:
            return None
        original = rolo.summoning_text
        if len(original) <= max_length:
            return rolo

        if self.sensei is not None:
            summary = await self.sensei.summarize(original, max_length)
        else:
            summary = rule_based_summary(original, max_length)

        updated = self.store.rewrite_summoning_text(rolo_id, summary)
        if self.event_logger:
            self.event_logger.log_ghost(rolo_id, len(original), len(summary))
        return updated

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_attributes(self, uri: str, include_deleted: bool = False) -> list[Attribute]:
        return self.store.get_attributes(uri, include_deleted=include_deleted)

    def get_attribute_history(self, uri: str, key: str) -> list[AttributeHistoryEntry]:
        return self.store.get_attribute_history(uri, key)

    def get_recent_rolos(self, limit: int = 50) -> list[Rolo]:
        return self.store.get_recent_rolos(limit=limit)

    def get_rolo(self, rolo_id: str) -> Rolo | None:
        return self.store.get_rolo(rolo_id)

    def get_records_by_namespace(self, namespace: Namespace) -> list[Record]:
        return self.store.get_records_by_namespace(namespace)

    def search(self, query: str) -> SearchResults:
        """Substring search across ledger text, names, keys and values."""
        return SearchResults(
            rolos=self.store.search_rolos(query),
            records=self.store.search_records_by_name(query),
            attributes=self.store.search_attributes(query),
        )
