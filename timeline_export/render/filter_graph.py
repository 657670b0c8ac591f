"""Typed filter graph for FFmpeg ``-filter_complex``.

The graph is built from node objects connected by labels and is only turned
into FFmpeg's textual syntax by ``FilterGraph.serialize``. The graph checks
its own wiring while it is built: labels are unique, every referenced label
exists, and no label is consumed twice.

Overlay graph layout (multi-track strategy):

    input 0            base canvas (lavfi color source)
    inputs 1..n        video/image segments, in stacking order
    inputs n+1..m      audio-only segments

    [0:v][1:v]overlay=enable='between(t,s,e)'[v1];
    [2:v]scale=w:h,rotate=...[transformed1];
    [v1][transformed1]overlay=x:y:enable='between(t,s,e)'[vout];
    [1:a]adelay=2000|all=1[adelayed0];
    ...
    [adelayed0][adelayed1]amix=inputs=2:duration=longest[aout]
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Optional, Union

from timeline_export.schemas.export import ClipProcessing
from timeline_export.schemas.timeline import ClipPosition, Resolution

logger = logging.getLogger(__name__)

VIDEO_OUTPUT_LABEL = "vout"
AUDIO_OUTPUT_LABEL = "aout"


def fmt_number(value: float) -> str:
    """Format a number for filter arguments without float noise."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.6f}".rstrip("0").rstrip(".")


class GraphError(ValueError):
    """The filter graph is miswired."""


# ============================================================================
# Nodes
# ============================================================================


@dataclass(frozen=True)
class InputRef:
    """A stream of one of the engine's ``-i`` inputs."""

    index: int
    stream: str = "v"

    @property
    def label(self) -> str:
        return f"{self.index}:{self.stream}"


@dataclass(frozen=True)
class Scale:
    width: int
    height: int

    def render(self) -> str:
        return f"scale={self.width}:{self.height}"


@dataclass(frozen=True)
class Rotate:
    """Rotate by ``radians`` onto a transparent ``ow`` x ``oh`` canvas."""

    radians: float
    ow: int
    oh: int

    def render(self) -> str:
        return f"rotate='{self.radians}':ow={self.ow}:oh={self.oh}:fillcolor=black@0"


@dataclass(frozen=True)
class Overlay:
    """Overlay the second input on the first, only while ``start <= t <= end``.

    ``x``/``y`` of None means the overlay is anchored at the top-left
    corner with FFmpeg's defaults (full-canvas clips).
    """

    start: float
    end: float
    x: Optional[int] = None
    y: Optional[int] = None

    def render(self) -> str:
        enable = f"enable='between(t,{fmt_number(self.start)},{fmt_number(self.end)})'"
        if self.x is None or self.y is None:
            return f"overlay={enable}"
        return f"overlay={self.x}:{self.y}:{enable}"


@dataclass(frozen=True)
class Delay:
    """Delay every channel of an audio stream."""

    milliseconds: int

    def render(self) -> str:
        return f"adelay={self.milliseconds}|all=1"


@dataclass(frozen=True)
class Mix:
    inputs: int
    duration: str = "longest"

    def render(self) -> str:
        return f"amix=inputs={self.inputs}:duration={self.duration}"


@dataclass(frozen=True)
class Null:
    """Video pass-through."""

    def render(self) -> str:
        return "null"


FilterNode = Union[Scale, Rotate, Overlay, Delay, Mix, Null]
Source = Union[InputRef, str]


@dataclass(frozen=True)
class FilterChain:
    """One ``;``-separated statement: inputs, a filter chain, one output."""

    inputs: tuple[str, ...]
    filters: tuple[FilterNode, ...]
    output: str

    def render(self) -> str:
        pads = "".join(f"[{label}]" for label in self.inputs)
        body = ",".join(node.render() for node in self.filters)
        return f"{pads}{body}[{self.output}]"


@dataclass
class FilterGraph:
    """An ordered set of filter chains with validated label wiring."""

    chains: list[FilterChain] = field(default_factory=list)
    _produced: set[str] = field(default_factory=set)
    _consumed: set[str] = field(default_factory=set)
    _counters: dict[str, int] = field(default_factory=dict)

    def new_label(self, prefix: str) -> str:
        """Allocate a label not yet used in this graph."""
        n = self._counters.get(prefix, 0)
        while f"{prefix}{n}" in self._produced:
            n += 1
        self._counters[prefix] = n + 1
        return f"{prefix}{n}"

    def add_chain(
        self,
        inputs: list[Source],
        filters: list[FilterNode],
        output: Optional[str] = None,
        prefix: str = "n",
    ) -> str:
        """Append a chain and return its output label."""
        if not filters:
            raise GraphError("A filter chain needs at least one filter")

        input_labels: list[str] = []
        for source in inputs:
            if isinstance(source, InputRef):
                label = source.label
            else:
                label = source
                if label not in self._produced:
                    raise GraphError(f"Dangling reference to [{label}]")
            if label in self._consumed:
                raise GraphError(f"Label [{label}] is consumed twice")
            input_labels.append(label)

        if output is None:
            output = self.new_label(prefix)
        elif output in self._produced:
            raise GraphError(f"Duplicate output label [{output}]")

        self._consumed.update(input_labels)
        self._produced.add(output)
        self.chains.append(FilterChain(tuple(input_labels), tuple(filters), output))
        return output

    def outputs(self) -> list[str]:
        """Labels produced but not consumed by any later chain."""
        return [c.output for c in self.chains if c.output not in self._consumed]

    def serialize(self) -> str:
        return ";".join(chain.render() for chain in self.chains)


# ============================================================================
# Geometry
# ============================================================================


@dataclass(frozen=True)
class PixelBox:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class RotatedBox:
    """Padded square canvas for a rotated box and its overlay anchor."""

    padded: int
    overlay_x: int
    overlay_y: int


def pixel_box(position: ClipPosition, resolution: Resolution) -> PixelBox:
    """Convert a normalized position into absolute canvas pixels.

    The box is at least 1x1: FFmpeg reads a scale dimension of 0 as "keep the
    input size".
    """
    return PixelBox(
        x=round(position.x * resolution.width),
        y=round(position.y * resolution.height),
        width=max(1, round(position.width * resolution.width)),
        height=max(1, round(position.height * resolution.height)),
    )


def rotation_box(x: int, y: int, width: int, height: int) -> RotatedBox:
    """Size a rotation canvas to the box diagonal, keeping the box center.

    The rotated image is centered in a ``padded`` x ``padded`` square, so its
    anchor is the unrotated center minus half the padded size.
    """
    padded = math.ceil(math.sqrt(width * width + height * height))
    return RotatedBox(
        padded=padded,
        overlay_x=round(x + width / 2 - padded / 2),
        overlay_y=round(y + height / 2 - padded / 2),
    )


def stacking_order(video_clips: list[ClipProcessing]) -> list[ClipProcessing]:
    """Order in which clips are overlaid (last = topmost).

    Track order descending puts the lowest-order track on top; within a
    track, lower zIndex draws first, then earlier clips.
    """

    def key(item: ClipProcessing) -> tuple[int, int, float]:
        z_index = item.clip.position.z_index if item.clip.position else 0
        return (-item.track_order, z_index, item.clip.start_time)

    return sorted(video_clips, key=key)


def audio_delay_ms(start_time: float) -> int:
    """Delay that positions a clip's audio at its timeline start."""
    return max(0, math.floor(start_time * 1000))


# ============================================================================
# Overlay graph synthesis
# ============================================================================


@dataclass
class OverlayGraph:
    graph: FilterGraph
    video_label: str
    audio_label: Optional[str]
    video_inputs: list[ClipProcessing]
    audio_inputs: list[ClipProcessing]
    mixed_clip_ids: list[str]

    @property
    def filter_complex(self) -> str:
        return self.graph.serialize()


def build_overlay_graph(
    video_clips: list[ClipProcessing],
    audio_clips: list[ClipProcessing],
    audio_flags: dict[str, bool],
    resolution: Resolution,
) -> OverlayGraph:
    """Build the multi-track overlay graph.

    Args:
        video_clips: Normalized video/image clips (any order)
        audio_clips: Normalized audio-only clips
        audio_flags: clip id -> whether its segment has an audio stream
        resolution: Output canvas size

    Returns:
        OverlayGraph; input 0 must be the base canvas, followed by
        ``video_inputs`` then ``audio_inputs`` in that order.
    """
    graph = FilterGraph()
    stacked = stacking_order(video_clips)
    current: Source = InputRef(0, "v")

    for idx, item in enumerate(stacked):
        input_index = idx + 1
        clip = item.clip
        output = VIDEO_OUTPUT_LABEL if idx == len(stacked) - 1 else f"v{idx + 1}"

        if clip.position is not None:
            box = pixel_box(clip.position, resolution)
            transform: list[FilterNode] = [Scale(box.width, box.height)]
            overlay_x, overlay_y = box.x, box.y
            if clip.position.rotation:
                rotated = rotation_box(box.x, box.y, box.width, box.height)
                transform.append(
                    Rotate(math.radians(clip.position.rotation), rotated.padded, rotated.padded)
                )
                overlay_x, overlay_y = rotated.overlay_x, rotated.overlay_y
            transformed = graph.add_chain(
                [InputRef(input_index, "v")],
                transform,
                output=f"transformed{idx}",
            )
            overlay = Overlay(clip.start_time, clip.end_time, overlay_x, overlay_y)
            graph.add_chain([current, transformed], [overlay], output=output)
        else:
            overlay = Overlay(clip.start_time, clip.end_time)
            graph.add_chain([current, InputRef(input_index, "v")], [overlay], output=output)

        current = output

    if not stacked:
        # Audio-only timeline: the bare canvas is the picture
        graph.add_chain([current], [Null()], output=VIDEO_OUTPUT_LABEL)

    # Audio: one delay stage per audio-bearing input, then a single mix
    delayed: list[str] = []
    mixed_clip_ids: list[str] = []
    audio_sources = [(i + 1, item) for i, item in enumerate(stacked)]
    audio_sources += [(len(stacked) + i + 1, item) for i, item in enumerate(audio_clips)]
    for input_index, item in audio_sources:
        if not audio_flags.get(item.clip.id, False):
            continue
        label = graph.add_chain(
            [InputRef(input_index, "a")],
            [Delay(audio_delay_ms(item.clip.start_time))],
            output=f"adelayed{len(delayed)}",
        )
        delayed.append(label)
        mixed_clip_ids.append(item.clip.id)

    audio_label: Optional[str] = None
    if delayed:
        audio_label = graph.add_chain(delayed, [Mix(len(delayed))], output=AUDIO_OUTPUT_LABEL)

    logger.info(
        f"[GRAPH] {len(stacked)} video layers, {len(delayed)} audio streams "
        f"({len(audio_sources) - len(delayed)} silent skipped)"
    )
    return OverlayGraph(
        graph=graph,
        video_label=VIDEO_OUTPUT_LABEL,
        audio_label=audio_label,
        video_inputs=stacked,
        audio_inputs=list(audio_clips),
        mixed_clip_ids=mixed_clip_ids,
    )
