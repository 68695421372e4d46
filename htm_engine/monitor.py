from dataclasses import dataclass, field
from statistics import fmean, pstdev
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
    Set,
)

from .connections import Connections
from .temporal_memory import ComputeCycle, TemporalMemory


@dataclass
class Trace:
    """Named per-step record of one quantity."""

    title: str
    data: List[Any] = field(default_factory=list)

    def counts(self) -> "Trace":
        """Same trace with every set replaced by its size."""
        return Trace(f"# {self.title}", [len(item) for item in self.data])


@dataclass
class Metric:
    title: str
    data: List[float]

    @classmethod
    def create_from_trace(cls, trace: Trace, exclude_resets: Optional[Trace] = None) -> "Metric":
        """Build a metric from a counts trace, skipping steps that followed a reset."""
        data = list(trace.data)
        if exclude_resets is not None:
            data = [value for value, reset in zip(data, exclude_resets.data) if not reset]
        return cls(trace.title, data)

    @property
    def stats(self) -> Dict[str, float]:
        if not self.data:
            return {"mean": 0.0, "std": 0.0, "min": 0.0, "max": 0.0, "sum": 0.0}
        values = [float(v) for v in self.data]
        return {
            "mean": fmean(values),
            "std": pstdev(values) if len(values) > 1 else 0.0,
            "min": min(values),
            "max": max(values),
            "sum": sum(values),
        }


class MonitoredTemporalMemory(TemporalMemory):
    """Temporal memory that keeps a history of every step for inspection.

    Transition traces (predicted => active and so on) are derived lazily from
    the recorded predicted cells and active columns.
    """

    def __init__(self, name: str = "TM") -> None:
        self.mm_name = name
        self._reset_active = True
        self._transition_traces_stale = True
        self._traces: Dict[str, Trace] = {}
        self._data: Dict[str, Any] = {}
        self.mm_clear_history()

    def compute(
        self,
        c: Connections,
        active_columns: Iterable[int],
        learn: bool = True,
        sequence_label: Optional[str] = None,
    ) -> ComputeCycle:
        columns = set(int(col) for col in active_columns)
        self._traces["predictedCells"].data.append(set(c.predictive_cells))

        cycle = super().compute(c, columns, learn)

        self._traces["predictiveCells"].data.append(set(cycle.predictive_cells))
        self._traces["activeCells"].data.append(set(cycle.active_cells))
        self._traces["activeColumns"].data.append(columns)
        self._traces["numSegments"].data.append(c.num_segments())
        self._traces["numSynapses"].data.append(c.num_synapses())
        self._traces["sequenceLabels"].data.append(sequence_label)
        self._traces["resets"].data.append(self._reset_active)

        self._reset_active = False
        self._transition_traces_stale = True
        self._connections = c
        return cycle

    def reset(self, c: Connections) -> None:
        super().reset(c)
        self._reset_active = True

    def mm_clear_history(self) -> None:
        self._traces = {
            "predictedCells": Trace("predicted cells"),
            "activeColumns": Trace("active columns"),
            "activeCells": Trace("active cells"),
            "predictiveCells": Trace("predictive cells"),
            "numSegments": Trace("# segments"),
            "numSynapses": Trace("# synapses"),
            "sequenceLabels": Trace("sequence labels"),
            "resets": Trace("resets"),
        }
        self._data = {}
        self._transition_traces_stale = True
        self._connections: Optional[Connections] = None

    def mm_get_trace(self, name: str) -> Trace:
        if name in (
            "predictedActiveCells",
            "predictedInactiveCells",
            "predictedActiveColumns",
            "predictedInactiveColumns",
            "unpredictedActiveColumns",
        ):
            self.mm_compute_transition_traces()
        return self._traces[name]

    def mm_compute_transition_traces(self) -> None:
        if not self._transition_traces_stale:
            return

        predicted_active_cells_trace = Trace("predicted => active cells (correct)")
        predicted_inactive_cells_trace = Trace("predicted => inactive cells (extra)")
        predicted_active_columns_trace = Trace("predicted => active columns (correct)")
        predicted_inactive_columns_trace = Trace("predicted => inactive columns (extra)")
        unpredicted_active_columns_trace = Trace("unpredicted => active columns (bursting)")
        cells_for_sequence: Dict[str, Set[int]] = {}

        cells_per_column = self._connections.cells_per_column if self._connections else 1
        labels = self._traces["sequenceLabels"].data
        for i, active_columns in enumerate(self._traces["activeColumns"].data):
            predicted_active_cells: Set[int] = set()
            predicted_inactive_cells: Set[int] = set()
            predicted_active_columns: Set[int] = set()
            predicted_inactive_columns: Set[int] = set()

            for cell in self._traces["predictedCells"].data[i]:
                column = cell // cells_per_column
                if column in active_columns:
                    predicted_active_cells.add(cell)
                    predicted_active_columns.add(column)
                    if labels[i]:
                        cells_for_sequence.setdefault(labels[i], set()).add(cell)
                else:
                    predicted_inactive_cells.add(cell)
                    predicted_inactive_columns.add(column)

            predicted_active_cells_trace.data.append(predicted_active_cells)
            predicted_inactive_cells_trace.data.append(predicted_inactive_cells)
            predicted_active_columns_trace.data.append(predicted_active_columns)
            predicted_inactive_columns_trace.data.append(predicted_inactive_columns)
            unpredicted_active_columns_trace.data.append(set(active_columns) - predicted_active_columns)

        self._traces["predictedActiveCells"] = predicted_active_cells_trace
        self._traces["predictedInactiveCells"] = predicted_inactive_cells_trace
        self._traces["predictedActiveColumns"] = predicted_active_columns_trace
        self._traces["predictedInactiveColumns"] = predicted_inactive_columns_trace
        self._traces["unpredictedActiveColumns"] = unpredicted_active_columns_trace
        self._data["predictedActiveCellsForSequence"] = cells_for_sequence
        self._transition_traces_stale = False

    # ----- metrics -----

    def mm_get_metric_sequences_predicted_active_cells_per_column(self) -> Metric:
        self.mm_compute_transition_traces()
        counts = [len(cells) for cells in self._data["predictedActiveCellsForSequence"].values()]
        return Metric("# predicted => active cells per column for each sequence", counts)

    def mm_get_metric_sequences_predicted_active_cells_shared(self) -> Metric:
        """How many sequences each predicted => active cell shows up in, minus one."""
        self.mm_compute_transition_traces()
        num_sequences_for_cell: Dict[int, int] = {}
        for cells in self._data["predictedActiveCellsForSequence"].values():
            for cell in cells:
                num_sequences_for_cell[cell] = num_sequences_for_cell.get(cell, -1) + 1
        return Metric(
            "# sequences each predicted => active cells appears in",
            list(num_sequences_for_cell.values()),
        )

    def mm_get_default_traces(self) -> List[Trace]:
        return [
            self.mm_get_trace("predictedActiveCells").counts(),
            self.mm_get_trace("predictedInactiveCells").counts(),
            self.mm_get_trace("predictedActiveColumns").counts(),
            self.mm_get_trace("predictedInactiveColumns").counts(),
            self.mm_get_trace("unpredictedActiveColumns").counts(),
            self._traces["numSegments"],
            self._traces["numSynapses"],
        ]

    def mm_get_default_metrics(self) -> List[Metric]:
        resets = self._traces["resets"]
        traces = self.mm_get_default_traces()
        metrics = [Metric.create_from_trace(trace, resets) for trace in traces[:-2]]
        metrics += [Metric.create_from_trace(trace) for trace in traces[-2:]]
        metrics.append(self.mm_get_metric_sequences_predicted_active_cells_per_column())
        metrics.append(self.mm_get_metric_sequences_predicted_active_cells_shared())
        return metrics

    def mm_pretty_print_metrics(self, metrics: Optional[List[Metric]] = None) -> str:
        metrics = metrics if metrics is not None else self.mm_get_default_metrics()
        lines = [
            "+----------------------------------------------------------+----------+----------+----------+----------+----------+",
            f"| {self.mm_name + ' metric':<57}|     mean |      std |      min |      max |      sum |",
            "+----------------------------------------------------------+----------+----------+----------+----------+----------+",
        ]
        for metric in metrics:
            s = metric.stats
            lines.append(
                f"| {metric.title[:56]:<57}| {s['mean']:>8.2f} | {s['std']:>8.2f} | "
                f"{s['min']:>8.2f} | {s['max']:>8.2f} | {s['sum']:>8.2f} |"
            )
        lines.append(lines[0])
        return "\n".join(lines)
