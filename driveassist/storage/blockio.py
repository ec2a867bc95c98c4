"""Raw block I/O commands: wiping, imaging and benchmarks.

All of these write or read whole devices with ``dd`` or ``shred``; every
write variant destroys the target's contents.
"""

from __future__ import annotations

import posixpath

from driveassist.storage.commands import Command, Script, ScriptBuilder
from driveassist.storage.exceptions import InvalidRequestError

IMAGE_BLOCK_SIZE = "4M"
BENCHMARK_BLOCK_SIZE = "1M"
BENCHMARK_FILE = "driveassist_benchmark.tmp"

# Multi-pass order: random data, two zero passes, then a final full pass.
ERASE_PASSES = ("/dev/urandom", "/dev/zero", "/dev/zero", "/dev/urandom")


def synthesize_shred(device_path: str, passes: int = 3, zero: bool = True) -> Command:
    if passes < 1:
        raise InvalidRequestError("passes", "at least one pass is required")
    args = ["shred", "-v", "-n", str(passes)]
    if zero:
        args.append("-z")
    return Command.of(*args, device_path)


def _dd_wipe(source: str, device_path: str) -> Command:
    return Command.of(
        "dd", f"if={source}", f"of={device_path}", "bs=1M", "status=progress", "conv=fsync"
    )


def synthesize_erase(device_path: str, *, multi_pass: bool = False) -> Script:
    """Overwrite ``device_path`` with random data, or with the four-pass pattern.

    ``dd`` exits non-zero with "No space left on device" when it reaches the
    end of the target; that is the expected end of a wipe.
    """
    sources = ERASE_PASSES if multi_pass else ERASE_PASSES[:1]
    builder = ScriptBuilder(strict=False)
    total = len(sources)
    for number, source in enumerate(sources, start=1):
        builder.echo(f"Pass {number}/{total}: {posixpath.basename(source)}")
        builder.run(*_dd_wipe(source, device_path).argv, suffix="|| true")
    builder.run("sync")
    return builder.build()


def synthesize_image_copy(device_path: str, image_path: str) -> Command:
    """Copy a device or partition into an image file."""
    return Command.of(
        "dd", f"if={device_path}", f"of={image_path}", f"bs={IMAGE_BLOCK_SIZE}", "status=progress"
    )


def synthesize_image_restore(image_path: str, device_path: str) -> Command:
    """Write an image file back onto a device."""
    return Command.of(
        "dd",
        f"if={image_path}",
        f"of={device_path}",
        f"bs={IMAGE_BLOCK_SIZE}",
        "status=progress",
        "conv=fsync",
    )


def _count(size_mib: int) -> str:
    if size_mib <= 0:
        raise InvalidRequestError("benchmark size", "must be at least 1 MiB")
    return f"count={size_mib}"


def synthesize_read_benchmark(device_path: str, size_mib: int) -> Command:
    return Command.of(
        "dd", f"if={device_path}", "of=/dev/null", f"bs={BENCHMARK_BLOCK_SIZE}",
        _count(size_mib), "iflag=direct", "status=progress",
    )


def benchmark_file_path(directory: str) -> str:
    return posixpath.join(directory, BENCHMARK_FILE)


def synthesize_file_write_benchmark(directory: str, size_mib: int) -> Script:
    """Write a test file in ``directory`` with direct I/O, then remove it."""
    target = benchmark_file_path(directory)
    builder = ScriptBuilder(strict=False)
    builder.run(
        "dd", "if=/dev/zero", f"of={target}", f"bs={BENCHMARK_BLOCK_SIZE}",
        _count(size_mib), "oflag=direct", "status=progress",
    )
    builder.raw("status=$?")
    builder.run("rm", "-f", target)
    builder.raw('exit "$status"')
    return builder.build()


def synthesize_raw_write_benchmark(device_path: str, size_mib: int) -> Command:
    """Destructive: overwrites the first ``size_mib`` MiB of the device."""
    return Command.of(
        "dd", "if=/dev/zero", f"of={device_path}", f"bs={BENCHMARK_BLOCK_SIZE}",
        _count(size_mib), "oflag=direct", "status=progress",
    )
