"""
Decode fetched bytes into float32 PCM.

The whole payload is decoded in one go (sounds are short effects), resampled
to the output rate/layout, and returned as a (frames, channels) array.
Runs on an executor thread; it touches no engine state.
"""
from __future__ import annotations

import io
from typing import List

import av
import fleep
import numpy as np

from engine.errors import DecodeError
from engine.track import DecodedBuffer

# fleep only needs the file header.
SNIFF_BYTES = 128

_LAYOUTS = {1: "mono", 2: "stereo"}


def _planar_to_frames(arr: np.ndarray) -> np.ndarray:
    """(channels, samples) planar array -> (samples, channels) float32.

    The resampler always emits planar frames, so the layout is known and no
    shape guessing is done (drain frames can be only a sample or two long).
    """
    if arr.ndim == 1:
        arr = arr[None, :]
    arr = arr.T
    if arr.dtype == np.float32:
        out = arr
    elif np.issubdtype(arr.dtype, np.floating):
        out = arr.astype(np.float32, copy=False)
    elif np.issubdtype(arr.dtype, np.signedinteger):
        info = np.iinfo(arr.dtype)
        out = (arr.astype(np.float32) / max(abs(info.min), info.max)).astype(np.float32, copy=False)
    else:
        out = arr.astype(np.float32)
    return out


def _ensure_channels(pcm: np.ndarray, target_channels: int) -> np.ndarray:
    frames, ch = pcm.shape
    if ch == target_channels:
        return pcm
    if ch > target_channels:
        return pcm[:, :target_channels]
    if ch == 1:
        return np.repeat(pcm, target_channels, axis=1)
    pad = np.zeros((frames, target_channels - ch), dtype=np.float32)
    return np.concatenate([pcm, pad], axis=1)


def _resampler_for(source_channels: int, channels: int, sample_rate: int) -> av.AudioResampler:
    # Mono stays mono; _ensure_channels copies it to every output channel at full level.
    if source_channels == 1:
        layout = "mono"
    else:
        layout = _LAYOUTS.get(int(channels))
    if layout is None:
        return av.AudioResampler(format="fltp", rate=int(sample_rate))
    return av.AudioResampler(format="fltp", layout=layout, rate=int(sample_rate))


def sniff_types(data: bytes) -> List[str]:
    """Return fleep's coarse type guess for the payload header (may be empty)."""
    try:
        info = fleep.get(bytes(data[:SNIFF_BYTES]))
    except Exception:
        return []
    return list(info.type or [])


def decode_bytes(data: bytes, url: str, *, sample_rate: int, channels: int) -> DecodedBuffer:
    if not data:
        raise DecodeError(url, "empty payload")

    kinds = sniff_types(data)
    # Only reject when fleep positively recognises something that is not audio;
    # unknown headers are left to FFmpeg.
    if kinds and not any(k in ("audio", "video") for k in kinds):
        raise DecodeError(url, f"not an audio payload ({', '.join(kinds)})")

    try:
        container = av.open(io.BytesIO(data), mode="r")
    except (av.error.FFmpegError, ValueError, OSError) as e:
        raise DecodeError(url, str(e)) from e

    try:
        stream = next((s for s in container.streams if s.type == "audio"), None)
        if stream is None:
            raise DecodeError(url, "no audio stream")

        resampler = None
        chunks: List[np.ndarray] = []
        try:
            for packet in container.demux(stream):
                for frame in packet.decode():
                    if resampler is None:
                        resampler = _resampler_for(len(frame.layout.channels), channels, sample_rate)
                    for out_frame in resampler.resample(frame):
                        chunks.append(_ensure_channels(_planar_to_frames(out_frame.to_ndarray()), channels))
            if resampler is not None:
                # Drain samples still buffered inside the resampler.
                for out_frame in resampler.resample(None):
                    chunks.append(_ensure_channels(_planar_to_frames(out_frame.to_ndarray()), channels))
        except (av.error.FFmpegError, ValueError) as e:
            raise DecodeError(url, str(e)) from e
    finally:
        try:
            container.close()
        except Exception:
            pass

    chunks = [c for c in chunks if c.size]
    if not chunks:
        raise DecodeError(url, "no audio frames")

    pcm = np.ascontiguousarray(np.concatenate(chunks, axis=0), dtype=np.float32)
    return DecodedBuffer(url=url, pcm=pcm, sample_rate=int(sample_rate), channels=int(channels))
