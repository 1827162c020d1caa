"""Three-step report submission workflow.

Step 1 takes a free-text query and asks the gateway which bureau endpoints
and data fields it needs. Step 2 collects those fields from the user and
submits them, routing each value only to the endpoints that asked for it.
Step 3 is the finished report. Supporting PDFs can be uploaded once a report
id exists.

Every remote or persistence failure leaves the workflow at its last
successful step; the caller gets ``False`` and ``state.error`` describes what
went wrong.
"""
import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from credisphere.core.config import Settings, get_settings
from credisphere.core.session import Session
from credisphere.models import Report, new_report_id
from credisphere.schemas import (
    AnalysisSection, ClassificationSection, ReportData, UploadsSection, UserInputsSection,
    WorkflowStateResponse, section_entry,
)
from credisphere.services.gateway import AnalysisGateway, AnalysisResult, GatewayError, UploadFileTuple
from credisphere.services.report_repository import ReportNotFoundError, ReportRepository

logger = logging.getLogger(__name__)

PERSISTENCE_ERRORS = (SQLAlchemyError, ReportNotFoundError)


class WorkflowValidationError(ValueError):
    """Raised for invalid user input or an out-of-order workflow action."""
    pass


def derive_form_fields(requested_data: list[list[str]]) -> list[str]:
    """Union of all requested field names, first-seen order, no duplicates."""
    form_fields: list[str] = []
    seen: set[str] = set()
    for fields in requested_data:
        for name in fields:
            if name not in seen:
                seen.add(name)
                form_fields.append(name)
    return form_fields


@dataclass
class WorkflowState:
    step: int = 1
    analysis_query: str = ""
    api_calls: list[str] = field(default_factory=list)
    requested_data: list[list[str]] = field(default_factory=list)
    form_fields: list[str] = field(default_factory=list)
    user_inputs: dict[str, str] = field(default_factory=dict)
    report_id: str | None = None
    error: str | None = None


class ReportWorkflow:
    def __init__(
        self,
        session: Session,
        repository: ReportRepository,
        gateway: AnalysisGateway,
        settings: Settings | None = None,
    ):
        self.session = session
        self.repository = repository
        self.gateway = gateway
        self.settings = settings or get_settings()
        self.state = WorkflowState()
        self.last_result: AnalysisResult | None = None
        self._report_created = False
        self._abandoned = False
        self._uploaded: list[str] = []

    @classmethod
    def resume(
        cls,
        report: Report,
        session: Session,
        repository: ReportRepository,
        gateway: AnalysisGateway,
        settings: Settings | None = None,
    ) -> "ReportWorkflow":
        """Rebuild the workflow for a stored report owned by ``session``."""
        if report.user_id != session.user_id:
            raise ReportNotFoundError(f"Report not found: {report.report_id}")

        workflow = cls(session, repository, gateway, settings)
        data = ReportData.from_blob(report.other_json_data)
        state = workflow.state
        state.report_id = report.report_id
        state.analysis_query = report.initial_context
        if data.classification:
            state.api_calls = list(data.classification.api_calls)
            state.requested_data = [list(f) for f in data.classification.requested_data]
            state.form_fields = derive_form_fields(state.requested_data)
        if data.user_inputs:
            state.user_inputs = {
                name: value for name, value in data.user_inputs.values.items()
                if name in state.form_fields
            }
        if data.uploads:
            workflow._uploaded = list(data.uploads.filenames)
        state.step = data.step
        workflow._report_created = True
        return workflow

    @property
    def report_id(self) -> str | None:
        return self.state.report_id

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def abandon(self) -> None:
        """Stop the workflow; responses that arrive later are discarded."""
        self._abandoned = True
        logger.info("Workflow for report %s abandoned at step %s", self.state.report_id, self.state.step)

    def _check_open(self) -> None:
        if self._abandoned:
            raise WorkflowValidationError("Workflow has been abandoned")

    def _fail(self, message: str, exc: Exception | None = None) -> bool:
        self.state.error = f"{message}: {exc}" if exc else message
        logger.warning("Report %s step %s failed: %s", self.state.report_id, self.state.step, self.state.error)
        return False

    async def _fail_persistence(self, message: str, exc: Exception) -> bool:
        await self.repository.rollback()
        return self._fail(message, exc)

    def _discard_late_response(self, what: str) -> bool:
        logger.info("Discarding %s response for abandoned report %s", what, self.state.report_id)
        self.state.error = "Workflow has been abandoned"
        return False

    async def submit_query(self, query: str) -> bool:
        self._check_open()
        query = (query or "").strip()
        if not query:
            raise WorkflowValidationError("Please enter what you want to analyze")
        if self.state.step != 1:
            raise WorkflowValidationError("A query has already been submitted for this report")

        self.state.error = None
        self.state.analysis_query = query
        if self.state.report_id is None:
            self.state.report_id = new_report_id()
        report_id = self.state.report_id
        user_id = self.session.user_id

        try:
            if self._report_created:
                await self.repository.update_initial_context(report_id, user_id, query)
            else:
                await self.repository.create_report(report_id, user_id, query)
                self._report_created = True
        except PERSISTENCE_ERRORS as e:
            return await self._fail_persistence("Failed to save your query", e)

        try:
            classification = await self.gateway.classify(query, report_id)
        except GatewayError as e:
            return self._fail("Failed to process your query", e)
        if self._abandoned:
            return self._discard_late_response("classification")

        form_fields = derive_form_fields(classification.requested_data)
        section = ClassificationSection(
            api_calls=classification.api_calls,
            requested_data=classification.requested_data,
            form_fields=form_fields,
        )
        try:
            await self.repository.update_report_data(report_id, user_id, section_entry(section))
        except PERSISTENCE_ERRORS as e:
            return await self._fail_persistence("Failed to save the requested fields", e)

        self.state.api_calls = classification.api_calls
        self.state.requested_data = classification.requested_data
        self.state.form_fields = form_fields
        self.state.step = 2
        logger.info("Report %s needs %d fields for %d API calls", report_id, len(form_fields), len(classification.api_calls))
        return True

    def _check_awaiting_fields(self) -> None:
        if self.state.report_id is None or self.state.step < 2:
            raise WorkflowValidationError("No fields have been requested for this report yet")
        if self.state.step != 2:
            raise WorkflowValidationError("This report is not waiting for field values")

    def record_field(self, name: str, value: str) -> None:
        self._check_awaiting_fields()
        if name not in self.state.form_fields:
            raise WorkflowValidationError(f"Unknown field: {name}")
        self.state.user_inputs[name] = value

    def missing_fields(self) -> list[str]:
        return [
            name for name in self.state.form_fields
            if not (self.state.user_inputs.get(name) or "").strip()
        ]

    async def save_inputs(self) -> bool:
        """Persist the values recorded so far."""
        self._check_awaiting_fields()
        section = UserInputsSection(values=dict(self.state.user_inputs))
        try:
            await self.repository.update_report_data(self.state.report_id, self.session.user_id, section_entry(section))
        except PERSISTENCE_ERRORS as e:
            return await self._fail_persistence("Failed to save your inputs", e)
        return True

    def build_payload(self) -> list[dict[str, Any]]:
        """Pair each endpoint with only the values it asked for."""
        payload: list[dict[str, Any]] = []
        for index, endpoint in enumerate(self.state.api_calls):
            required = self.state.requested_data[index] if index < len(self.state.requested_data) else []
            fields: dict[str, str] = {}
            for name in required:
                value = self.state.user_inputs.get(name)
                if value and value.strip():
                    fields[name] = value
            payload.append({"endpoint": endpoint, "fields": fields})
        return payload

    async def submit_final(self) -> bool:
        self._check_open()
        if self.state.step != 2:
            raise WorkflowValidationError("This report is not waiting for field values")

        self.state.error = None
        report_id = self.state.report_id
        try:
            result = await self.gateway.analyze(self.build_payload(), report_id)
        except GatewayError as e:
            return self._fail("Failed to submit your data", e)
        if self._abandoned:
            return self._discard_late_response("analysis")

        update = {
            **section_entry(UserInputsSection(values=dict(self.state.user_inputs))),
            **section_entry(AnalysisSection(markdown=result.markdown, raw=result.raw)),
        }
        try:
            await self.repository.update_report_data(
                report_id, self.session.user_id, update, markdown=result.markdown
            )
        except PERSISTENCE_ERRORS as e:
            return await self._fail_persistence("Failed to save the analysis", e)

        if result.markdown is None:
            logger.info("Analysis for report %s returned no narrative", report_id)
        self.last_result = result
        self.state.step = 3
        return True

    async def upload_supporting_files(self, files: list[UploadFileTuple]) -> bool:
        self._check_open()
        if self.state.report_id is None or self.state.step < 2:
            raise WorkflowValidationError("Submit a query before uploading files")
        if not files:
            raise WorkflowValidationError("Please select files to upload")
        if len(files) > self.settings.upload_max_files:
            raise WorkflowValidationError(f"Maximum {self.settings.upload_max_files} files allowed")

        self.state.error = None
        report_id = self.state.report_id
        try:
            ack = await self.gateway.upload(files, report_id)
        except GatewayError as e:
            return self._fail("Failed to upload files", e)
        if self._abandoned:
            return self._discard_late_response("upload")

        filenames = self._uploaded + [name for name, _, _ in files]
        section = UploadsSection(filenames=filenames, acknowledgement=ack)
        try:
            await self.repository.update_report_data(report_id, self.session.user_id, section_entry(section))
        except PERSISTENCE_ERRORS as e:
            return await self._fail_persistence("Files were uploaded but could not be recorded", e)
        self._uploaded = filenames
        logger.info("Uploaded %d files for report %s", len(files), report_id)
        return True

    def to_response(self) -> WorkflowStateResponse:
        return WorkflowStateResponse(
            report_id=self.state.report_id,
            step=self.state.step,
            analysis_query=self.state.analysis_query,
            api_calls=self.state.api_calls,
            requested_data=self.state.requested_data,
            form_fields=self.state.form_fields,
            user_inputs=self.state.user_inputs,
            missing_fields=self.missing_fields(),
        )
