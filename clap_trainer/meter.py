#!/usr/bin/env python3
"""
Clap Meter
==========
Listens to your microphone and shows the input level against the clap
threshold, flashing whenever a clap is detected. Use it to pick a
``--threshold`` that catches your claps and ignores the room.

Dependencies: numpy, sounddevice
Usage:        clap-meter [--threshold 0.15] [--device 1]
"""

import argparse
import logging
import sys
import threading
import time

from .config import DEBOUNCE_MS, ENERGY_THRESHOLD, TrainerConfig, setup_logging
from .detector import OnsetDetector
from .errors import AudioInputError

# ─── Terminal Colors ─────────────────────────────────────────────────────────
RST = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
CYAN = "\033[96m"

BAR_WIDTH = 40
FLASH_SECONDS = 0.15
DISPLAY_LINES = 3


def build_level_bar(level: float, threshold: float, width: int = BAR_WIDTH) -> str:
    """
    Level bar with the threshold marked.

    [██████████░░░░░░░┃░░░░░░░░░░░░░░░░░░░░░]
    """
    filled = max(0, min(width, int(level * width)))
    mark = max(0, min(width - 1, int(threshold * width)))
    bar = ["█" if i < filled else "░" for i in range(width)]
    bar[mark] = "┃"
    color = GREEN if level > threshold else DIM
    return f"[{color}{''.join(bar)}{RST}]  {level:.3f}"


class ClapMeter:
    def __init__(self, detector: OnsetDetector):
        self.detector = detector
        self.claps = 0
        self.last_clap = 0.0
        self._lock = threading.Lock()

    def on_onset(self, at: float) -> None:
        with self._lock:
            self.claps += 1
            self.last_clap = at

    def lines(self, now: float) -> list[str]:
        with self._lock:
            claps, flashing = self.claps, now - self.last_clap < FLASH_SECONDS
        flash = f"{RED}{BOLD}  👏 CLAP!{RST}" if flashing else ""
        return [
            f"  Level: {build_level_bar(self.detector.level, self.detector.gate.threshold)}",
            f"  Claps: {CYAN}{claps}{RST}{flash}",
            f"  {DIM}Threshold {self.detector.gate.threshold:.3f}, "
            f"dead time {self.detector.gate.debounce * 1000:.0f} ms{RST}",
        ]

    def display(self) -> None:
        sys.stdout.write(f"\033[{DISPLAY_LINES}A")
        for line in self.lines(self.detector.clock()):
            sys.stdout.write(f"\r\033[2K{line}\n")
        sys.stdout.flush()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Live clap detection meter")
    parser.add_argument("--threshold", type=float, default=ENERGY_THRESHOLD)
    parser.add_argument("--debounce", type=float, default=DEBOUNCE_MS, help="dead time in ms")
    parser.add_argument("--device", default=None, help="input device name or index")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    device = args.device
    if device is not None and device.isdigit():
        device = int(device)
    config = TrainerConfig.from_env(threshold=args.threshold, debounce_ms=args.debounce,
                                    device=device)

    print("\033[2J\033[H")  # clear screen
    print("╔══════════════════════════════════════════════════════════╗")
    print("║          👏  Clap Meter  👏                              ║")
    print("╠══════════════════════════════════════════════════════════╣")
    print("║  Clap near the microphone and watch the level.          ║")
    print("║  A clap counts when the bar crosses the ┃ marker.       ║")
    print("║  Press Ctrl+C to exit.                                  ║")
    print("╚══════════════════════════════════════════════════════════╝")
    print()

    detector = OnsetDetector(
        threshold=config.threshold,
        debounce_ms=config.debounce_ms,
        sample_rate=config.sample_rate,
        device=config.device,
    )
    meter = ClapMeter(detector)

    try:
        with detector:
            detector.start(meter.on_onset)
            print(f"  {GREEN}✅ Microphone active. Listening...{RST}\n")
            for _ in range(DISPLAY_LINES):
                print()
            while True:
                meter.display()
                time.sleep(0.05)
    except KeyboardInterrupt:
        print(f"\n\n  👋 Goodbye! {meter.claps} claps heard.")
    except AudioInputError as e:
        print(f"\n  {RED}❌ Audio error: {e}{RST}")
        print("  Make sure your microphone is connected and accessible.")
        sys.exit(1)


if __name__ == "__main__":
    main()
