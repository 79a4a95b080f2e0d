"""Widget tools.

Table and chart tools return validated payloads that the client renders
inline, at the position of the tool part inside the assistant message.
"""

from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import Field
from pydantic import ValidationError
from pydantic import model_validator

from .base import Tool
from .base import ToolContext
from .base import ToolError

MAX_TABLE_ROWS = 500


class TableWidget(BaseModel):
    title: str | None = None
    columns: list[str] = Field(min_length=1)
    rows: list[list[Any]] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_row_width(self) -> "TableWidget":
        for index, row in enumerate(self.rows):
            if len(row) != len(self.columns):
                raise ValueError(f"Row {index} has {len(row)} cells, expected {len(self.columns)}")
        return self


class ChartWidget(BaseModel):
    title: str | None = None
    chart_type: Literal["bar", "line", "area", "pie", "scatter"] = "bar"
    data: list[dict[str, Any]] = Field(min_length=1)
    x_key: str
    y_keys: list[str] = Field(min_length=1)

    @model_validator(mode="after")
    def check_keys(self) -> "ChartWidget":
        available = set().union(*(row.keys() for row in self.data))
        missing = [key for key in [self.x_key, *self.y_keys] if key not in available]
        if missing:
            raise ValueError(f"Keys not present in data: {', '.join(missing)}")
        return self


class ShowTableTool(Tool):
    name = "show_table"
    description = "Display tabular data to the user as a table."
    parameters = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "columns": {"type": "array", "items": {"type": "string"}},
            "rows": {"type": "array", "items": {"type": "array"}},
        },
        "required": ["columns", "rows"],
    }

    async def execute(self: "ShowTableTool", args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        try:
            table = TableWidget.model_validate(args)
        except ValidationError as e:
            raise ToolError(f"Invalid table: {e.errors()[0]['msg']}") from e

        truncated = len(table.rows) > MAX_TABLE_ROWS
        payload = table.model_dump()
        payload["rows"] = table.rows[:MAX_TABLE_ROWS]
        return {"widget": "table", "table": payload, "rowCount": len(table.rows), "truncated": truncated}


class ShowChartTool(Tool):
    name = "show_chart"
    description = "Display data to the user as a chart."
    parameters = {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "chart_type": {"type": "string", "enum": ["bar", "line", "area", "pie", "scatter"]},
            "data": {"type": "array", "items": {"type": "object"}},
            "x_key": {"type": "string"},
            "y_keys": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["data", "x_key", "y_keys"],
    }

    async def execute(self: "ShowChartTool", args: dict[str, Any], context: ToolContext) -> dict[str, Any]:
        try:
            chart = ChartWidget.model_validate(args)
        except ValidationError as e:
            raise ToolError(f"Invalid chart: {e.errors()[0]['msg']}") from e
        return {"widget": "chart", "chart": chart.model_dump()}
