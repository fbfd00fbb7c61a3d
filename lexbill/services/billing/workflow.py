"""Billing document workflow engine.

One invocation runs, strictly in order:

    validate -> render -> sign -> record_document -> dispatch_email -> record_email

Failure policy per step:

- validate: the case state gate or an unknown district rejects the run
  before anything is written.
- render: fatal. No file, no rows.
- sign: degradable. The document is kept unsigned and the reason goes
  into the step detail.
- record_document: fatal. When the file was written but its row was not,
  the error names the orphaned path so it can be reconciled.
- dispatch_email: recorded. Success or failure, exactly one email attempt
  row is written, and the document stays on file either way.
- without an email transport both email steps are skipped.

The document row and the email attempt row are written in separate
transactions. Invocations for the same case are serialized through a
CaseLockRegistry; different cases run concurrently.

A cancelled invocation lets the step in flight settle before the
cancellation propagates. A written file always ends up with its row or
an orphan report, and a started send always ends up with its attempt row.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from prometheus_client import Counter
from sqlalchemy.exc import SQLAlchemyError

from lexbill.core.exceptions import (
    BillingError,
    DocumentOrphanedError,
    DocumentRecordError,
    EmailDeliveryError,
    EmailNotConfiguredError,
    InvalidRetryTargetError,
    NotFoundError,
    RenderError,
    SigningError,
    StorageUnavailableError,
    ValidationError,
)
from lexbill.core.logging import bound_context
from lexbill.db.repositories import CaseRepo, DocumentRepo, EmailAttemptRepo
from lexbill.db.session import get_session
from lexbill.models.database import EmailAttemptRow, GeneratedDocumentRow
from lexbill.models.domain import (
    JUDICIAL_DISTRICTS,
    WORKFLOW_DOCUMENT_KIND,
    BillingConfig,
    Case,
    CaseHistory,
    DocumentKind,
    EmailAttempt,
    EmailStatus,
    GeneratedDocument,
    SignatureInfo,
    StepOutcome,
    StepResult,
    WorkflowKind,
    WorkflowResult,
    WorkflowStep,
)
from lexbill.services.billing.amounts import compute_invoice_amounts, compute_mileage_amount
from lexbill.services.billing.config_provider import SettingsConfigProvider
from lexbill.services.billing.gate import ensure_authorized
from lexbill.services.billing.locks import CaseLockRegistry
from lexbill.services.cases.service import ensure_known_district
from lexbill.services.documents.renderer import ReportLabRenderer
from lexbill.services.documents.storage import DocumentStorage
from lexbill.services.signing.strategies import select_signature_strategy

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from lexbill.core.config import Settings
    from lexbill.services.email.transport import EmailTransport
    from lexbill.services.signing.backend import SignerBackend

logger: structlog.stdlib.BoundLogger = structlog.get_logger()

T = TypeVar("T")

WORKFLOW_RUNS = Counter(
    "billing_workflow_runs_total",
    "Billing workflow invocations by final result",
    ["workflow", "result"],
)
WORKFLOW_STEPS = Counter(
    "billing_workflow_steps_total",
    "Billing workflow step outcomes",
    ["workflow", "step", "outcome"],
)


# ---------------------------------------------------------------------------
# Email wording
# ---------------------------------------------------------------------------


def build_subject(kind: DocumentKind, external_reference: str, district: str | None) -> str:
    if kind == DocumentKind.MILEAGE_CLAIM:
        return f"{external_reference} - SUPLIDO - {district}"
    return f"{external_reference} - MINUTA"


def build_body(kind: DocumentKind, external_reference: str, district: str | None) -> str:
    if kind == DocumentKind.MILEAGE_CLAIM:
        return f"Adjunto suplido ({district}) para el expediente {external_reference}."
    return f"Adjunto minuta para el expediente {external_reference}."


def _steps_detail(steps: list[StepResult]) -> list[dict[str, Any]]:
    return [step.model_dump(mode="json") for step in steps]


async def _settle(work: Awaitable[T]) -> T:
    """Await ``work`` so that cancelling the caller does not interrupt it.

    On cancellation the work runs to completion (or fails) first, and only
    then is the CancelledError re-raised.
    """
    task = asyncio.ensure_future(work)
    try:
        return await asyncio.shield(task)
    except asyncio.CancelledError:
        await asyncio.wait([task])
        if not task.cancelled():
            task.exception()
        raise


class BillingWorkflowEngine:
    """Orchestrates billing document generation, signing, storage and email."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config_provider: SettingsConfigProvider,
        renderer: ReportLabRenderer,
        storage: DocumentStorage,
        *,
        signer_backend: SignerBackend | None = None,
        email_transport: EmailTransport | None = None,
        locks: CaseLockRegistry | None = None,
        render_timeout: float = 30.0,
        sign_timeout: float = 30.0,
        email_timeout: float = 45.0,
    ) -> None:
        self._session_factory = session_factory
        self._config_provider = config_provider
        self._renderer = renderer
        self._storage = storage
        self._signer_backend = signer_backend
        self._email_transport = email_transport
        self._locks = locks or CaseLockRegistry()
        self._render_timeout = render_timeout
        self._sign_timeout = sign_timeout
        self._email_timeout = email_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        signer_backend: SignerBackend | None = None,
        email_transport: EmailTransport | None = None,
        locks: CaseLockRegistry | None = None,
    ) -> BillingWorkflowEngine:
        """Wire an engine with the default renderer and storage for ``settings``."""
        return cls(
            session_factory,
            SettingsConfigProvider(settings),
            ReportLabRenderer(),
            DocumentStorage(settings.documents_path),
            signer_backend=signer_backend,
            email_transport=email_transport,
            locks=locks,
            render_timeout=settings.render_timeout_seconds,
            sign_timeout=settings.sign_timeout_seconds,
            email_timeout=settings.email_timeout_seconds,
        )

    @property
    def email_enabled(self) -> bool:
        return self._email_transport is not None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def generate_invoice(self, case_id: int) -> WorkflowResult:
        """Generate, sign, store and email a fixed-fee invoice."""
        return await self._run(WorkflowKind.FIXED_FEE_INVOICE, case_id, None)

    async def generate_mileage_claim(
        self,
        case_id: int,
        district: str | None = None,
    ) -> WorkflowResult:
        """Generate a mileage claim. ``district`` defaults to the case's district."""
        return await self._run(WorkflowKind.MILEAGE_CLAIM, case_id, district)

    async def retry_email(self, case_id: int, attempt_id: int) -> EmailAttempt:
        """Resend the document of a failed attempt and record a new attempt.

        The stored file is sent as is; nothing is re-rendered or re-signed.
        The failed attempt is left untouched.
        """
        async with self._locks.hold(case_id):
            with bound_context(case_id=case_id, retry_of=attempt_id):
                async with self._read_session() as session:
                    original = await EmailAttemptRepo(session).get_by_id(attempt_id)
                    if original is None or original.case_id != case_id:
                        raise InvalidRetryTargetError(
                            f"Email attempt {attempt_id} does not exist for case {case_id}",
                            details={"case_id": case_id, "attempt_id": attempt_id},
                        )
                    if original.status != EmailStatus.ERROR:
                        raise InvalidRetryTargetError(
                            f"Email attempt {attempt_id} was already delivered",
                            details={"attempt_id": attempt_id, "status": original.status},
                        )
                    document_row = None
                    if original.document_id is not None:
                        document_row = await DocumentRepo(session).get_by_id(original.document_id)
                    case_row = await CaseRepo(session).get_by_id(case_id)

                if document_row is None or not self._storage.exists(document_row.storage_path):
                    raise InvalidRetryTargetError(
                        f"Document for email attempt {attempt_id} no longer exists",
                        details={"attempt_id": attempt_id, "document_id": original.document_id},
                    )
                transport = self._email_transport
                if transport is None:
                    raise EmailNotConfiguredError("Email delivery is not configured")

                document = GeneratedDocument.model_validate(document_row)
                external_reference = ""
                if case_row is not None:
                    external_reference = (
                        case_row.external_reference or case_row.internal_reference
                    )
                body = build_body(document.document_kind, external_reference, document.district)
                data = await self._storage.read(document.storage_path)
                attempt = await _settle(
                    self._resend(
                        transport,
                        case_id,
                        document,
                        original.recipient,
                        original.subject,
                        body,
                        data,
                        retry_of=attempt_id,
                    )
                )

                logger.info(
                    "email_retried",
                    new_attempt_id=attempt.id,
                    status=attempt.status.value,
                )
                return attempt

    async def get_history(self, case_id: int) -> CaseHistory:
        """Documents and email attempts of a case, newest first."""
        async with self._read_session() as session:
            if await CaseRepo(session).get_by_id(case_id) is None:
                raise NotFoundError(f"Case {case_id} not found", details={"case_id": case_id})
            documents = await DocumentRepo(session).list_by_case(case_id)
            emails = await EmailAttemptRepo(session).list_by_case(case_id)
            return CaseHistory(
                case_id=case_id,
                documents=[GeneratedDocument.model_validate(row) for row in documents],
                emails=[EmailAttempt.model_validate(row) for row in emails],
            )

    async def get_document(self, document_id: int) -> GeneratedDocument:
        async with self._read_session() as session:
            row = await DocumentRepo(session).get_by_id(document_id)
            if row is None:
                raise NotFoundError(
                    f"Document {document_id} not found",
                    details={"document_id": document_id},
                )
            return GeneratedDocument.model_validate(row)

    async def read_document(self, document_id: int) -> tuple[GeneratedDocument, bytes]:
        """Return a document record and its file contents."""
        document = await self.get_document(document_id)
        if not self._storage.exists(document.storage_path):
            raise NotFoundError(
                f"File for document {document_id} is missing",
                details={"document_id": document_id},
            )
        return document, await self._storage.read(document.storage_path)

    def mileage_rates(self) -> list[tuple[str, Decimal | None]]:
        """Every known judicial district with its configured rate, if any."""
        config = self._config_provider.get_billing_config()
        return [(district, config.mileage_rates.get(district)) for district in JUDICIAL_DISTRICTS]

    def signature_info(self) -> SignatureInfo:
        config = self._config_provider.get_billing_config()
        return select_signature_strategy(config, self._signer_backend).get_active_info()

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------

    async def _run(
        self,
        workflow: WorkflowKind,
        case_id: int,
        district: str | None,
    ) -> WorkflowResult:
        async with self._locks.hold(case_id):
            with bound_context(case_id=case_id, workflow=workflow.value):
                config = self._config_provider.get_billing_config()
                steps: list[StepResult] = []
                try:
                    result = await self._execute(workflow, case_id, district, config, steps)
                except ValidationError:
                    WORKFLOW_RUNS.labels(workflow=workflow.value, result="rejected").inc()
                    raise
                except BillingError:
                    WORKFLOW_RUNS.labels(workflow=workflow.value, result="failed").inc()
                    raise
                WORKFLOW_RUNS.labels(workflow=workflow.value, result="completed").inc()
                logger.info(
                    "workflow_completed",
                    document_id=result.document_id,
                    email_attempt_id=result.email_attempt_id,
                    signed=result.signed,
                )
                return result

    async def _execute(
        self,
        workflow: WorkflowKind,
        case_id: int,
        district: str | None,
        config: BillingConfig,
        steps: list[StepResult],
    ) -> WorkflowResult:
        kind = WORKFLOW_DOCUMENT_KIND[workflow]

        # validate
        case = await self._load_case(case_id)
        try:
            ensure_authorized(case, workflow)
            if workflow == WorkflowKind.MILEAGE_CLAIM:
                district = ensure_known_district(district or case.litigation_district)
        except ValidationError as exc:
            self._step(steps, workflow, WorkflowStep.VALIDATE, StepOutcome.FAILED, exc.message)
            raise
        self._step(steps, workflow, WorkflowStep.VALIDATE, StepOutcome.COMPLETED)

        # render
        fields: dict[str, Any] = {
            "client_name": case.client_name,
            "internal_reference": case.internal_reference,
            "external_reference": case.external_reference,
            "generated_on": date.today(),
        }
        base_fee: Decimal | None = None
        vat_rate: Decimal | None = None
        # only a validated mileage claim carries a district
        if district is None:
            figures = compute_invoice_amounts(config)
            fields.update(figures.model_dump())
            amount = figures.total
            base_fee, vat_rate = figures.base_fee, figures.vat_rate
        else:
            amount = compute_mileage_amount(config, district)
            fields.update(district=district, amount=amount)
            if district not in config.mileage_rates:
                logger.warning("mileage_rate_not_configured", district=district)

        data = await self._render(workflow, kind, fields, steps)

        # sign
        data, signed = await self._sign(workflow, config, data, steps)

        # record_document: the file and its row settle together
        document = await _settle(
            self._record_document(
                workflow,
                case,
                kind,
                data,
                signed=signed,
                amount=amount,
                base_fee=base_fee,
                vat_rate=vat_rate,
                district=district,
                steps=steps,
            )
        )

        # dispatch_email, record_email: a started send is always recorded
        email_attempt_id = await _settle(
            self._email(workflow, case, document, data, config.recipient_email, district, steps)
        )

        return WorkflowResult(
            workflow=workflow,
            case_id=case.id,
            steps=steps,
            document_id=document.id,
            email_attempt_id=email_attempt_id,
            signed=signed,
            amount=amount,
            district=district,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _load_case(self, case_id: int) -> Case:
        async with self._read_session() as session:
            row = await CaseRepo(session).get_by_id(case_id)
            if row is None:
                raise NotFoundError(f"Case {case_id} not found", details={"case_id": case_id})
            return Case.model_validate(row)

    async def _render(
        self,
        workflow: WorkflowKind,
        kind: DocumentKind,
        fields: dict[str, Any],
        steps: list[StepResult],
    ) -> bytes:
        try:
            data = await self._bounded(self._renderer.render(kind, fields), self._render_timeout)
        except TimeoutError as exc:
            message = f"Rendering timed out after {self._render_timeout}s"
            cause: Exception = exc
        except RenderError as exc:
            message = exc.message
            cause = exc
        except Exception as exc:
            logger.exception("render_crashed")
            message = f"Rendering failed: {exc}"
            cause = exc
        else:
            self._step(steps, workflow, WorkflowStep.RENDER, StepOutcome.COMPLETED)
            return data

        self._step(steps, workflow, WorkflowStep.RENDER, StepOutcome.FAILED, message)
        raise RenderError(message, details={"steps": _steps_detail(steps)}) from cause

    async def _sign(
        self,
        workflow: WorkflowKind,
        config: BillingConfig,
        data: bytes,
        steps: list[StepResult],
    ) -> tuple[bytes, bool]:
        strategy = select_signature_strategy(config, self._signer_backend)
        try:
            signed_data = await self._bounded(strategy.sign(data), self._sign_timeout)
        except TimeoutError:
            reason = f"Signing timed out after {self._sign_timeout}s"
        except SigningError as exc:
            reason = f"{type(exc).__name__}: {exc.message}"
        except Exception as exc:
            logger.exception("signing_crashed")
            reason = f"{type(exc).__name__}: {exc}"
        else:
            self._step(
                steps,
                workflow,
                WorkflowStep.SIGN,
                StepOutcome.COMPLETED,
                strategy.get_active_info().kind.value,
            )
            return signed_data, True

        self._step(
            steps,
            workflow,
            WorkflowStep.SIGN,
            StepOutcome.FAILED,
            f"{reason}; document kept unsigned",
        )
        return data, False

    async def _record_document(
        self,
        workflow: WorkflowKind,
        case: Case,
        kind: DocumentKind,
        data: bytes,
        *,
        signed: bool,
        amount: Decimal,
        base_fee: Decimal | None,
        vat_rate: Decimal | None,
        district: str | None,
        steps: list[StepResult],
    ) -> GeneratedDocument:
        try:
            path = await self._storage.write(kind, case.internal_reference, data)
        except OSError as exc:
            message = f"Document file could not be written: {exc}"
            self._step(steps, workflow, WorkflowStep.RECORD_DOCUMENT, StepOutcome.FAILED, message)
            raise DocumentRecordError(message, details={"steps": _steps_detail(steps)}) from exc

        try:
            async with get_session(self._session_factory) as session:
                row = await DocumentRepo(session).insert(
                    GeneratedDocumentRow(
                        case_id=case.id,
                        document_kind=kind.value,
                        storage_path=str(path),
                        signed=signed,
                        amount=amount,
                        base_fee=base_fee,
                        vat_rate=vat_rate,
                        district=district,
                    )
                )
                document = GeneratedDocument.model_validate(row)
        except (SQLAlchemyError, OSError) as exc:
            message = "Document file was written but its record was not"
            self._step(steps, workflow, WorkflowStep.RECORD_DOCUMENT, StepOutcome.FAILED, message)
            logger.error("document_orphaned", path=str(path), error=str(exc))
            raise DocumentOrphanedError(
                message,
                path=str(path),
                details={"steps": _steps_detail(steps)},
            ) from exc

        self._step(
            steps,
            workflow,
            WorkflowStep.RECORD_DOCUMENT,
            StepOutcome.COMPLETED,
            f"document {document.id}",
        )
        return document

    async def _email(
        self,
        workflow: WorkflowKind,
        case: Case,
        document: GeneratedDocument,
        data: bytes,
        recipient: str,
        district: str | None,
        steps: list[StepResult],
    ) -> int | None:
        transport = self._email_transport
        if transport is None:
            detail = "Email transport not configured"
            self._step(steps, workflow, WorkflowStep.DISPATCH_EMAIL, StepOutcome.SKIPPED, detail)
            self._step(steps, workflow, WorkflowStep.RECORD_EMAIL, StepOutcome.SKIPPED, detail)
            return None

        external_reference = case.external_reference or case.internal_reference
        subject = build_subject(document.document_kind, external_reference, district)
        body = build_body(document.document_kind, external_reference, district)

        error_detail = await self._dispatch(
            transport, recipient, subject, body, data, Path(document.storage_path).name
        )
        if error_detail is None:
            self._step(steps, workflow, WorkflowStep.DISPATCH_EMAIL, StepOutcome.COMPLETED)
        else:
            self._step(
                steps, workflow, WorkflowStep.DISPATCH_EMAIL, StepOutcome.FAILED, error_detail
            )

        try:
            attempt = await self._insert_attempt(
                case_id=case.id,
                document_id=document.id,
                recipient=recipient,
                subject=subject,
                error_detail=error_detail,
            )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("email_attempt_not_recorded", document_id=document.id, error=str(exc))
            self._step(
                steps,
                workflow,
                WorkflowStep.RECORD_EMAIL,
                StepOutcome.FAILED,
                f"Email attempt could not be recorded: {exc}",
            )
            return None

        self._step(
            steps,
            workflow,
            WorkflowStep.RECORD_EMAIL,
            StepOutcome.COMPLETED,
            f"attempt {attempt.id}",
        )
        return attempt.id

    async def _resend(
        self,
        transport: EmailTransport,
        case_id: int,
        document: GeneratedDocument,
        recipient: str,
        subject: str,
        body: str,
        data: bytes,
        *,
        retry_of: int,
    ) -> EmailAttempt:
        error_detail = await self._dispatch(
            transport, recipient, subject, body, data, Path(document.storage_path).name
        )
        try:
            return await self._insert_attempt(
                case_id=case_id,
                document_id=document.id,
                recipient=recipient,
                subject=subject,
                error_detail=error_detail,
            )
        except (SQLAlchemyError, OSError) as exc:
            logger.error("email_attempt_not_recorded", document_id=document.id, error=str(exc))
            raise StorageUnavailableError(
                "Email attempt could not be recorded",
                details={"attempt_id": retry_of},
            ) from exc

    async def _dispatch(
        self,
        transport: EmailTransport,
        recipient: str,
        subject: str,
        body: str,
        data: bytes,
        filename: str,
    ) -> str | None:
        """Send one message. Returns None on success, else the error detail."""
        try:
            await self._bounded(
                transport.send(recipient, subject, body, data, filename),
                self._email_timeout,
            )
        except TimeoutError:
            return f"Email delivery timed out after {self._email_timeout}s"
        except EmailDeliveryError as exc:
            return exc.message
        except Exception as exc:
            logger.exception("email_transport_crashed")
            return f"{type(exc).__name__}: {exc}"
        return None

    async def _insert_attempt(
        self,
        *,
        case_id: int,
        document_id: int,
        recipient: str,
        subject: str,
        error_detail: str | None,
    ) -> EmailAttempt:
        status = EmailStatus.SENT if error_detail is None else EmailStatus.ERROR
        async with get_session(self._session_factory) as session:
            row = await EmailAttemptRepo(session).insert(
                EmailAttemptRow(
                    case_id=case_id,
                    document_id=document_id,
                    recipient=recipient,
                    subject=subject,
                    status=status.value,
                    error_detail=error_detail,
                )
            )
            return EmailAttempt.model_validate(row)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _read_session(self) -> AsyncIterator[AsyncSession]:
        """Session block that maps store outages to StorageUnavailableError."""
        try:
            async with get_session(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailableError("Billing store is unavailable") from exc

    @staticmethod
    async def _bounded(call: Awaitable[T], timeout: float) -> T:
        """Await an external call with a timeout, finishing it even if cancelled."""
        return await _settle(asyncio.wait_for(call, timeout))

    @staticmethod
    def _step(
        steps: list[StepResult],
        workflow: WorkflowKind,
        step: WorkflowStep,
        outcome: StepOutcome,
        detail: str | None = None,
    ) -> None:
        steps.append(StepResult(step=step, outcome=outcome, detail=detail))
        WORKFLOW_STEPS.labels(workflow=workflow.value, step=step.value, outcome=outcome.value).inc()
        log = logger.warning if outcome == StepOutcome.FAILED else logger.info
        log("workflow_step", step=step.value, outcome=outcome.value, detail=detail)

