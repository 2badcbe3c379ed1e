"""Built-in action handlers.

Each handler validates the part of the action config it needs when it runs;
workflow configs are not validated when they are saved.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from datetime import datetime
from string import Template
from typing import Any

import httpx

from ..core.config import HTTPClientConfig
from ..core.exceptions import ActionConfigError, ActionExecutionError, TransportError
from ..core.logger import get_logger
from ..services.ai import AIAnalyzer
from ..services.email import EmailSender
from ..services.notifications import Notifier
from ..services.records import RecordStore, UpdateTargetRegistry
from ..services.reports import ReportRegistry
from .actions import ActionRegistry, ActionResult, ActionType, BaseActionHandler
from .context import TriggerContext

logger = get_logger("automation.handlers")

_IDENTIFIER = re.compile(r"^[_a-zA-Z][_a-zA-Z0-9]*$")


class BuiltinHandler(BaseActionHandler):
    """Shared helpers for the built-in handlers."""

    def interpolate(self, value: Any, context: TriggerContext) -> Any:
        """Substitute ``$name`` placeholders with top-level payload values."""
        if isinstance(value, str):
            variables = {
                key: val
                for key, val in context.payload.items()
                if isinstance(key, str) and _IDENTIFIER.match(key)
            }
            return Template(value).safe_substitute(variables)
        if isinstance(value, dict):
            return {k: self.interpolate(v, context) for k, v in value.items()}
        if isinstance(value, list):
            return [self.interpolate(v, context) for v in value]
        return value

    def unavailable(self, collaborator: str) -> ActionExecutionError:
        return ActionExecutionError(f"{collaborator} not available", action_type=self.action_type)

    @contextmanager
    def reraise_as_action_error(self, what: str) -> Iterator[None]:
        """Turn collaborator exceptions into ActionExecutionError."""
        try:
            yield
        except ActionExecutionError:
            raise
        except Exception as exc:
            raise ActionExecutionError(
                f"{what}: {exc}", action_type=self.action_type, original_error=exc
            ) from exc


class SendEmailHandler(BuiltinHandler):
    """Send an email."""

    action_type = ActionType.SEND_EMAIL.value

    def __init__(self, email_sender: EmailSender | None = None) -> None:
        self.email_sender = email_sender

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Send an email.

        Config:
            to: Recipient address, comma-separated addresses or a list
            subject: Subject line
            body: Message body
            template: Optional template name
        """
        self.require_keys(config, "to", "subject", "body")
        if self.email_sender is None:
            raise self.unavailable("Email sender")

        with self.reraise_as_action_error("Failed to send email"):
            sent = self.email_sender.send(
                config["to"],
                self.interpolate(config["subject"], context),
                self.interpolate(config["body"], context),
                config.get("template"),
                timeout=context.remaining(),
            )
        return ActionResult.ok(sent)


class CreateTaskHandler(BuiltinHandler):
    """Create a task record."""

    action_type = ActionType.CREATE_TASK.value
    collection = "tasks"

    def __init__(self, record_store: RecordStore | None = None) -> None:
        self.record_store = record_store

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Create a task.

        Config:
            title: Task title (default: "Automated Task")
            description: Task description
            priority: Task priority (default: "medium")
            assigned_to: Optional assignee
            due_date: Optional due date
            project_id: Optional project
        """
        if self.record_store is None:
            raise self.unavailable("Record store")

        task = {
            "title": self.interpolate(config.get("title") or "Automated Task", context),
            "description": self.interpolate(config.get("description") or "", context),
            "priority": config.get("priority") or "medium",
            "assigned_to": config.get("assigned_to"),
            "due_date": config.get("due_date"),
            "project_id": config.get("project_id"),
            "scope_id": context.scope_id,
            "created_by": context.actor,
            "created_at": datetime.now().isoformat(),
            "workflow_id": context.workflow_id,
            "execution_id": context.execution_id,
        }

        with self.reraise_as_action_error("Failed to create task"):
            task_id = self.record_store.insert(self.collection, task)
        return ActionResult.ok({"task_id": task_id, "title": task["title"]})


class UpdateRecordHandler(BuiltinHandler):
    """Update a record through an allow-listed update target."""

    action_type = ActionType.UPDATE_RECORD.value

    def __init__(
        self,
        record_store: RecordStore | None = None,
        targets: UpdateTargetRegistry | None = None,
    ) -> None:
        self.record_store = record_store
        self.targets = targets if targets is not None else UpdateTargetRegistry()

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Update a record.

        Config:
            target: Name of a registered update target
            key: Value matched against the target's key field
            data: Mapping of field -> new value; fields must be allow-listed
        """
        self.require_keys(config, "target", "key", "data")
        if self.record_store is None:
            raise self.unavailable("Record store")

        target_name = config["target"]
        target = self.targets.get(target_name) if isinstance(target_name, str) else None
        if target is None:
            raise ActionConfigError(
                f"Unknown update target: {target_name}", action_type=self.action_type
            )

        data = config["data"]
        if not isinstance(data, Mapping) or not data:
            raise ActionConfigError(
                "update_record data must be a non-empty mapping", action_type=self.action_type
            )
        disallowed = target.disallowed(data)
        if disallowed:
            raise ActionConfigError(
                f"Fields not allowed for target {target.name}: {', '.join(disallowed)}",
                action_type=self.action_type,
            )

        values = self.interpolate(dict(data), context)
        with self.reraise_as_action_error(f"Failed to update {target.name}"):
            affected = self.record_store.update(
                target.collection, target.key_field, config["key"], values
            )
        return ActionResult.ok({"target": target.name, "affected": affected})


class GenerateReportHandler(BuiltinHandler):
    """Generate a named report."""

    action_type = ActionType.GENERATE_REPORT.value

    def __init__(self, reports: ReportRegistry | None = None) -> None:
        self.reports = reports if reports is not None else ReportRegistry()

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Generate a report.

        Config:
            report_type: Name of a registered report generator
            parameters: Optional generator parameters
        """
        self.require_keys(config, "report_type")
        report_type = config["report_type"]
        if report_type not in self.reports:
            raise ActionConfigError(
                f"Unknown report type: {report_type}", action_type=self.action_type
            )
        parameters = config.get("parameters") or {}
        if not isinstance(parameters, Mapping):
            raise ActionConfigError(
                "report parameters must be a mapping", action_type=self.action_type
            )

        with self.reraise_as_action_error(f"Failed to generate {report_type} report"):
            data = self.reports.generate(report_type, parameters, context)
        return ActionResult.ok({"report_type": report_type, "data": data})


class SendNotificationHandler(BuiltinHandler):
    """Send a user notification."""

    action_type = ActionType.SEND_NOTIFICATION.value

    def __init__(self, notifier: Notifier | None = None) -> None:
        self.notifier = notifier

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Send a notification.

        Config:
            user_id: Recipient (default: the actor who triggered the run)
            type: Notification type
            title: Notification title
            message: Notification message
        """
        self.require_keys(config, "type", "title", "message")
        if self.notifier is None:
            raise self.unavailable("Notifier")

        user_id = config.get("user_id") or context.actor
        if not user_id:
            raise ActionConfigError(
                "send_notification requires user_id when the run has no actor",
                action_type=self.action_type,
                missing_keys=["user_id"],
            )

        with self.reraise_as_action_error("Failed to send notification"):
            sent = self.notifier.send(
                str(user_id),
                config["type"],
                self.interpolate(config["title"], context),
                self.interpolate(config["message"], context),
                timeout=context.remaining(),
            )
        return ActionResult.ok(sent)


class ApiCallHandler(BuiltinHandler):
    """Call an external HTTP API.

    Any HTTP response counts as success, including 4xx and 5xx; the status code
    is reported as ``http_code``. Only a failure to get a response at all is an
    error.
    """

    action_type = ActionType.API_CALL.value

    VALID_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})
    BODY_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

    def __init__(
        self,
        http_config: HTTPClientConfig | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self.http_config = http_config or HTTPClientConfig()
        self._client = client

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Perform the request.

        Config:
            url: Request URL
            method: HTTP method (default: GET)
            headers: Mapping or list of "Name: value" strings
            params: Optional querystring parameters
            data: JSON body, sent for POST/PUT/PATCH/DELETE
        """
        self.require_keys(config, "url")
        method = str(config.get("method") or "GET").strip().upper()
        if method not in self.VALID_METHODS:
            raise ActionConfigError(
                f"Unsupported HTTP method: {method}", action_type=self.action_type
            )

        url = self.interpolate(config["url"], context)
        headers = {**self.http_config.headers, **self.parse_headers(config.get("headers"))}
        params = config.get("params") or None
        data = self.interpolate(config.get("data"), context)
        json_body = data if data and method in self.BODY_METHODS else None
        timeout = context.timeout_for(self.http_config.timeout)

        logger.debug("api_call %s %s (timeout=%s)", method, url, timeout)
        try:
            if self._client is not None:
                response = self._client.request(
                    method, url, headers=headers, params=params, json=json_body, timeout=timeout
                )
            else:
                with httpx.Client(
                    verify=self.http_config.verify,
                    follow_redirects=self.http_config.follow_redirects,
                ) as client:
                    response = client.request(
                        method,
                        url,
                        headers=headers,
                        params=params,
                        json=json_body,
                        timeout=timeout,
                    )
        except httpx.InvalidURL as exc:
            raise ActionConfigError(
                f"Invalid URL {url!r}: {exc}", action_type=self.action_type
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransportError(
                f"Request to {url} timed out", action_type=self.action_type, original_error=exc
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                f"Request to {url} failed: {exc}",
                action_type=self.action_type,
                original_error=exc,
            ) from exc

        if response.status_code >= 400:
            logger.info("api_call %s %s returned HTTP %s", method, url, response.status_code)

        return ActionResult.ok(
            {
                "http_code": response.status_code,
                "response": self._read_body(response),
                "url": str(response.url),
                "method": method,
            }
        )

    def parse_headers(self, headers: Any) -> dict[str, str]:
        if not headers:
            return {}
        if isinstance(headers, Mapping):
            return {str(k): str(v) for k, v in headers.items()}
        if isinstance(headers, list):
            parsed: dict[str, str] = {}
            for line in headers:
                name, sep, value = str(line).partition(":")
                if not sep or not name.strip():
                    raise ActionConfigError(
                        f"Malformed header: {line!r}", action_type=self.action_type
                    )
                parsed[name.strip()] = value.strip()
            return parsed
        raise ActionConfigError(
            "headers must be a mapping or a list of 'Name: value' strings",
            action_type=self.action_type,
        )

    @staticmethod
    def _read_body(response: httpx.Response) -> Any:
        if "application/json" in response.headers.get("content-type", ""):
            try:
                return response.json()
            except ValueError:
                return response.text
        return response.text


class AIAnalysisHandler(BuiltinHandler):
    """Run an AI analysis over the trigger payload or configured data."""

    action_type = ActionType.AI_ANALYSIS.value

    def __init__(self, analyzer: AIAnalyzer | None = None) -> None:
        self.analyzer = analyzer

    def execute(self, config: Mapping[str, Any], context: TriggerContext) -> ActionResult:
        """Run an analysis.

        Config:
            analysis_type: Kind of analysis to perform
            data: Data to analyse (default: the trigger payload)
        """
        self.require_keys(config, "analysis_type")
        if self.analyzer is None:
            raise self.unavailable("AI analyzer")

        data = config["data"] if config.get("data") is not None else context.payload
        with self.reraise_as_action_error("AI analysis failed"):
            analysis = self.analyzer.analyze(
                config["analysis_type"],
                data,
                context.ai_model,
                timeout=context.remaining(),
            )
        return ActionResult.ok(analysis)


def create_default_registry(
    email_sender: EmailSender | None = None,
    record_store: RecordStore | None = None,
    notifier: Notifier | None = None,
    analyzer: AIAnalyzer | None = None,
    reports: ReportRegistry | None = None,
    update_targets: UpdateTargetRegistry | None = None,
    http_config: HTTPClientConfig | None = None,
    http_client: httpx.Client | None = None,
) -> ActionRegistry:
    """Create a registry holding every built-in handler.

    Handlers whose collaborator is missing are still registered; they fail at
    execution time with an "... not available" error.
    """
    registry = ActionRegistry()
    registry.register(ActionType.SEND_EMAIL, SendEmailHandler(email_sender))
    registry.register(ActionType.CREATE_TASK, CreateTaskHandler(record_store))
    registry.register(ActionType.UPDATE_RECORD, UpdateRecordHandler(record_store, update_targets))
    registry.register(ActionType.GENERATE_REPORT, GenerateReportHandler(reports))
    registry.register(ActionType.SEND_NOTIFICATION, SendNotificationHandler(notifier))
    registry.register(ActionType.API_CALL, ApiCallHandler(http_config, http_client))
    registry.register(ActionType.AI_ANALYSIS, AIAnalysisHandler(analyzer))
    return registry


__all__ = [
    "BuiltinHandler",
    "SendEmailHandler",
    "CreateTaskHandler",
    "UpdateRecordHandler",
    "GenerateReportHandler",
    "SendNotificationHandler",
    "ApiCallHandler",
    "AIAnalysisHandler",
    "create_default_registry",
]
