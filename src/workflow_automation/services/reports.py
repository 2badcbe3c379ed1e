"""Named report generators for generate_report actions."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from ..core.logger import get_logger

if TYPE_CHECKING:
    from ..automation.context import TriggerContext

logger = get_logger("services.reports")

ReportGenerator = Callable[[Mapping[str, Any], "TriggerContext"], Any]


class ReportRegistry:
    """Registry of report generators keyed by report type.

    Only registered report types can be generated; there is no free-form query
    fallback.
    """

    def __init__(self, generators: Mapping[str, ReportGenerator] | None = None) -> None:
        self._generators: dict[str, ReportGenerator] = dict(generators or {})

    def register(self, report_type: str, generator: ReportGenerator | None = None) -> Any:
        """Register a generator. Usable directly or as a decorator.

        Example:
            ```python
            reports = ReportRegistry()

            @reports.register("inventory")
            def inventory_report(parameters, context):
                return load_inventory(context.scope_id)
            ```
        """
        if generator is None:

            def decorator(func: ReportGenerator) -> ReportGenerator:
                self._generators[report_type] = func
                return func

            return decorator

        self._generators[report_type] = generator
        return generator

    def get(self, report_type: str) -> ReportGenerator | None:
        return self._generators.get(report_type)

    def report_types(self) -> list[str]:
        return sorted(self._generators)

    def generate(
        self,
        report_type: str,
        parameters: Mapping[str, Any],
        context: TriggerContext,
    ) -> Any:
        """Run a generator.

        Raises:
            KeyError: If the report type is not registered
        """
        generator = self._generators.get(report_type)
        if generator is None:
            raise KeyError(report_type)
        logger.debug("Generating %s report for scope %s", report_type, context.scope_id)
        return generator(parameters, context)

    def __contains__(self, report_type: object) -> bool:
        return report_type in self._generators
