#!/usr/bin/env python3
"""
Clap Rhythm Trainer
===================
A terminal rhythm trainer that:
  1. Plays an 8-beat sixteenth-note pattern after a one-beat pickup
  2. Listens to your claps for the next 8 beats
  3. Scores every slot of the grid within ±100 ms

Practice mode just plays the pattern (looping or once) so you can learn it.

Dependencies: numpy, sounddevice
Usage:        clap-trainer [--bpm 100] [--mode quiz|practice] [--sound clap]
"""

import argparse
import logging
import sys
import threading
import time

from .config import COUNTDOWN_TICKS, MAX_BPM, MIN_BPM, TrainerConfig, setup_logging
from .detector import OnsetDetector
from .errors import AudioInputError, PatternError, StorageError
from .evaluation import BeatStatus, QuizEvaluation, accuracy_grade
from .generators import GENERATORS
from .pattern import Pattern, Preset
from .positions import PICKUP_SLOT, SLOT_COUNT, SUBDIVISIONS, slot_label
from .quiz import Phase, PracticeSession, QuizSession
from .recording import CapturedOnset
from .sequencer import Sequencer
from .storage import JsonFileStore, PresetLibrary, QuizHistory
from .transport import Transport, TransportContext
from .voices import TIMBRES, AudioOutput, CueVoice, Voice

# ─── Terminal Colors ─────────────────────────────────────────────────────────
RST = "\033[0m"
BOLD = "\033[1m"
DIM = "\033[2m"
RED = "\033[91m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
CYAN = "\033[96m"
WHITE = "\033[97m"
CLR_LINE = "\033[2K"

STATUS_MARKS = {
    BeatStatus.CORRECT: f"{GREEN}✓{RST}",
    BeatStatus.MISSED: f"{RED}✗{RST}",
    BeatStatus.EXTRA: f"{YELLOW}+{RST}",
    BeatStatus.CORRECT_SILENT: f"{DIM}·{RST}",
}

PHASE_TEXT = {
    Phase.IDLE: f"{DIM}Ready{RST}",
    Phase.PLAYING: f"{CYAN}🔊 Listen to the pattern …{RST}",
    Phase.RECORDING: f"{YELLOW}👏 Your turn, clap it back!{RST}",
    Phase.EVALUATING: f"{DIM}Scoring …{RST}",
    Phase.RESULT: f"{GREEN}Done{RST}",
}


# ─── Display ─────────────────────────────────────────────────────────────────

def grid_rows(pattern: Pattern, sounding: int | None = None, marker: int | None = None,
              evaluation: QuizEvaluation | None = None) -> list[str]:
    """Two bars of four beats: labels, pattern cells, and optionally results."""
    labels, cells, results = [], [], []
    for i in range(SLOT_COUNT):
        sep = "  " if i % SUBDIVISIONS == 0 and i else ""
        label = slot_label(i)
        labels.append(f"{sep}{BOLD if i % SUBDIVISIONS == 0 else DIM}{label:^3}{RST}")

        on = pattern[i].enabled
        if i == sounding:
            cell = f"{RED}●{RST}"
        elif on:
            cell = f"{WHITE}●{RST}"
        else:
            cell = f"{DIM}○{RST}"
        if i == marker and i != sounding:
            cell = f"{BLUE}▸{RST}" if not on else f"{BLUE}●{RST}"
        cells.append(f"{sep} {cell} ")

        if evaluation is not None:
            results.append(f"{sep} {STATUS_MARKS[evaluation.beats[i].status]} ")

    half = SLOT_COUNT // 2
    rows = []
    for start in (0, half):
        rows.append("  " + "".join(labels[start:start + half]))
        rows.append("  " + "".join(cells[start:start + half]))
        if results:
            rows.append("  " + "".join(results[start:start + half]))
        rows.append("")
    return rows


class Screen:
    """Terminal state, updated only from the visual channel."""

    def __init__(self, pattern: Pattern, bpm: int, title: str):
        self.pattern = pattern
        self.bpm = bpm
        self.title = title
        self.phase = Phase.IDLE
        self.sounding: int | None = None
        self.marker: int | None = None
        self.pickup = False
        self.claps: list[int] = []
        self.evaluation: QuizEvaluation | None = None
        self._lock = threading.Lock()

    def beat(self, slot: int) -> None:
        self.pickup = slot == PICKUP_SLOT
        self.sounding = None if self.pickup else slot
        self.render()

    def time_marker(self, slot: int) -> None:
        self.marker = slot
        self.render()

    def set_phase(self, phase: Phase) -> None:
        self.phase = phase
        if phase is Phase.RECORDING:
            self.sounding = None
        self.render()

    def clap(self, onset: CapturedOnset) -> None:
        self.claps.append(onset.slot_index)
        self.render()

    def result(self, evaluation: QuizEvaluation) -> None:
        self.evaluation = evaluation
        self.sounding = self.marker = None
        self.render()

    def render(self) -> None:
        with self._lock:
            lines = [
                "",
                f"  {BOLD}👏  Clap Rhythm Trainer  │  {self.title}{RST}",
                f"  {DIM}{'━' * 60}{RST}",
                f"  BPM: {CYAN}{self.bpm}{RST}  │  {PHASE_TEXT[self.phase]}"
                + (f"  {YELLOW}(pickup){RST}" if self.pickup else ""),
                f"  {DIM}{'━' * 60}{RST}",
                "",
            ]
            lines += grid_rows(self.pattern, self.sounding, self.marker, self.evaluation)
            if self.phase is Phase.RECORDING:
                lines.append(f"  Claps heard: {CYAN}{len(self.claps)}{RST}")
            else:
                lines.append("")
            if self.evaluation is not None:
                lines += result_lines(self.evaluation)
            lines.append("")
            sys.stdout.write("\033[H")
            for line in lines:
                sys.stdout.write(f"{CLR_LINE}{line}\n")
            sys.stdout.write("\033[J")
            sys.stdout.flush()


def result_lines(evaluation: QuizEvaluation) -> list[str]:
    grade = accuracy_grade(evaluation.accuracy)
    color = GREEN if evaluation.accuracy >= 85 else YELLOW if evaluation.accuracy >= 50 else RED
    lines = [
        f"  Accuracy: {color}{BOLD}{evaluation.accuracy:.1f}%{RST}  {grade}",
        f"  {GREEN}✓ {evaluation.correct_count} correct{RST}   "
        f"{RED}✗ {evaluation.missed_count} missed{RST}   "
        f"{YELLOW}+ {evaluation.extra_count} extra{RST}",
    ]
    if evaluation.average_timing_error > 0:
        lines.append(f"  Average timing error: {CYAN}{evaluation.average_timing_error} ms{RST}")
    return lines


# ─── App Wiring ──────────────────────────────────────────────────────────────

class Trainer:
    """Everything one terminal session needs, built from a config."""

    def __init__(self, config: TrainerConfig):
        self.config = config
        self.output = AudioOutput(sample_rate=config.sample_rate)
        self.context = TransportContext(
            bpm=config.bpm,
            strict=config.strict,
            volume_db=config.volume_db,
            output=self.output,
            voice=Voice.named(config.timbre, self.output),
            cue=CueVoice(self.output),
        )
        self.transport = Transport(self.context)
        self.sequencer = Sequencer(self.transport)
        self.detector = OnsetDetector(
            threshold=config.threshold,
            debounce_ms=config.debounce_ms,
            sample_rate=config.sample_rate,
            device=config.device,
        )
        store = JsonFileStore(config.store_path)
        self.presets = PresetLibrary(store)
        self.history = QuizHistory(store, limit=config.history_limit)
        self.presets.load()
        self.history.load()
        self.quiz = QuizSession(self.sequencer, self.detector, self.history,
                                tolerance_ms=config.tolerance_ms)
        self.practice = PracticeSession(self.sequencer)

    def attach(self, screen: Screen) -> None:
        self.sequencer.on_beat_sounding = screen.beat
        self.sequencer.on_time_marker = screen.time_marker
        self.quiz.on_phase_change = screen.set_phase
        self.quiz.on_quiz_result = screen.result
        self.quiz.on_clap = screen.clap
        self.practice.on_phase_change = screen.set_phase

    def shutdown(self) -> None:
        self.quiz.abort()
        self.practice.stop()
        self.transport.draw.close()
        self.output.stop()


def countdown(trainer: Trainer) -> None:
    """3 … 2 … 1 with cue ticks."""
    for n, (note, seconds) in zip(range(len(COUNTDOWN_TICKS), 0, -1), COUNTDOWN_TICKS):
        sys.stdout.write(f"\033[2J\033[H\n\n  Starting in {BOLD}{n}{RST} …\n")
        sys.stdout.flush()
        trainer.context.cue.tick(note)
        time.sleep(seconds)


def run_quiz(trainer: Trainer, pattern: Pattern, name: str, use_countdown: bool) -> QuizEvaluation | None:
    screen = Screen(pattern, trainer.context.bpm, f"Quiz: {name}")
    trainer.attach(screen)
    done = threading.Event()
    trainer.quiz.on_quiz_result = lambda ev: (screen.result(ev), done.set())
    trainer.quiz.on_phase_change = lambda ph: (screen.set_phase(ph),
                                               done.set() if ph is Phase.IDLE else None)

    if use_countdown:
        countdown(trainer)
    sys.stdout.write("\033[2J\033[H")
    trainer.quiz.start(pattern, pattern_name=name, use_pickup=trainer.config.use_pickup)
    try:
        while not done.wait(0.1):
            pass
    except KeyboardInterrupt:
        trainer.quiz.abort()
        return None
    error = trainer.quiz.error
    if isinstance(error, AudioInputError):
        raise error
    if error is not None and trainer.quiz.phase is not Phase.RESULT:
        print(f"\n  {RED}❌ Playback failed: {error}{RST}")
        return None
    if isinstance(trainer.quiz.error, StorageError):
        print(f"  {YELLOW}⚠ Result not saved: {trainer.quiz.error}{RST}")
    return trainer.quiz.result


def run_practice(trainer: Trainer, pattern: Pattern, name: str, loop: bool,
                 use_countdown: bool) -> None:
    screen = Screen(pattern, trainer.context.bpm, f"Practice: {name}")
    trainer.attach(screen)
    done = threading.Event()
    trainer.practice.on_phase_change = lambda ph: (screen.set_phase(ph),
                                                   done.set() if ph is Phase.IDLE else None)
    if use_countdown:
        countdown(trainer)
    sys.stdout.write("\033[2J\033[H")
    trainer.practice.start(pattern, loop=loop, use_pickup=trainer.config.use_pickup)
    try:
        while not done.wait(0.1):
            pass
    except KeyboardInterrupt:
        trainer.practice.stop()


# ─── Prompts ─────────────────────────────────────────────────────────────────

def ask_bpm(default: int) -> int:
    while True:
        raw = input(f"  Enter tempo (BPM, {MIN_BPM}–{MAX_BPM}) [{CYAN}{default}{RST}]: ").strip()
        if raw == "":
            return default
        try:
            bpm = int(raw)
        except ValueError:
            print(f"  {RED}Please enter a valid number.{RST}")
            continue
        if MIN_BPM <= bpm <= MAX_BPM:
            return bpm
        print(f"  {RED}Please enter a value between {MIN_BPM} and {MAX_BPM}.{RST}")


def parse_slots(text: str) -> Pattern:
    """'0,4,8' or '0 4 8' slot numbers → Pattern."""
    try:
        indices = [int(tok) for tok in text.replace(",", " ").split()]
    except ValueError:
        raise PatternError(f"slots must be numbers 0..{SLOT_COUNT - 1}: {text!r}") from None
    return Pattern.from_indices(indices)


def choose_pattern(trainer: Trainer) -> tuple[Pattern, str] | None:
    presets: list[Preset] = trainer.presets.all()
    print()
    print(f"  {BOLD}Choose a pattern:{RST}")
    for n, preset in enumerate(presets, 1):
        tag = f" {DIM}(custom){RST}" if preset.is_custom else ""
        print(f"    {YELLOW}{n:>2}{RST}  {preset.name}{tag}")
    print(f"    {GREEN}{', '.join(GENERATORS)}{RST}  random question")
    print(f"    {CYAN}slots{RST}  type slot numbers, e.g. {DIM}0 3 4 8{RST}")
    print(f"    {DIM}q{RST}      quit")

    while True:
        raw = input("  > ").strip().lower()
        if raw in ("q", "quit"):
            return None
        if raw in GENERATORS:
            return GENERATORS[raw](), f"Random ({raw})"
        if raw.isdigit() and 1 <= int(raw) <= len(presets):
            preset = presets[int(raw) - 1]
            return preset.pattern.copy(), preset.name
        try:
            pattern = parse_slots(raw)
        except PatternError as e:
            print(f"  {RED}{e}{RST}")
            continue
        if pattern.enabled_indices():
            return pattern, "Custom"
        print(f"  {RED}Pick a number, a difficulty, or some slots.{RST}")


def offer_save(trainer: Trainer, pattern: Pattern) -> None:
    name = input(f"  Save as preset? name (blank to skip): ").strip()
    if not name:
        return
    try:
        preset = trainer.presets.save_as(name, pattern, trainer.config.use_pickup)
    except StorageError as e:
        print(f"  {RED}❌ Save failed: {e}{RST}")
        return
    print(f"  {GREEN}Saved preset: {preset.name}{RST}")


def print_history(trainer: Trainer, count: int = 10) -> None:
    stats = trainer.history.statistics()
    print()
    print(f"  {BOLD}📊  Quiz History{RST}")
    print(f"  {DIM}{'━' * 40}{RST}")
    if not stats.total_quizzes:
        print("  No quizzes yet.")
        return
    print(f"  Quizzes: {stats.total_quizzes}  │  Average: {stats.average_accuracy}%  │  "
          f"Best: {GREEN}{stats.best_accuracy}%{RST}  │  Timing: {stats.average_timing_error} ms")
    for record in trainer.history.recent(count):
        when = time.strftime("%Y-%m-%d %H:%M", time.localtime(record.timestamp / 1000))
        print(f"  {DIM}{when}{RST}  {record.pattern_name:<24} {record.bpm:>3} bpm  "
              f"{record.evaluation.accuracy:>5.1f}%")


# ─── Modes ───────────────────────────────────────────────────────────────────

def quiz_mode(trainer: Trainer, use_countdown: bool) -> None:
    choice = choose_pattern(trainer)
    while choice is not None:
        pattern, name = choice
        try:
            evaluation = run_quiz(trainer, pattern, name, use_countdown)
        except AudioInputError as e:
            print(f"\n  {RED}❌ Audio error: {e}{RST}")
            print(f"  Make sure your microphone is connected and accessible.")
            return
        if evaluation is None:
            print(f"\n  {DIM}Quiz stopped.{RST}")
        print()
        raw = input(f"  [{YELLOW}r{RST}]etry  [{GREEN}n{RST}]ew pattern  [{CYAN}s{RST}]ave  "
                    f"[{BLUE}h{RST}]istory  [q]uit: ").strip().lower()
        if raw == "r":
            continue
        if raw == "s":
            offer_save(trainer, pattern)
        elif raw == "h":
            print_history(trainer)
        elif raw == "q":
            return
        trainer.quiz.invalidate()
        choice = choose_pattern(trainer)


def practice_mode(trainer: Trainer, loop: bool, use_countdown: bool) -> None:
    choice = choose_pattern(trainer)
    while choice is not None:
        pattern, name = choice
        if loop:
            print(f"  {DIM}Looping, press Ctrl+C to stop.{RST}")
            time.sleep(1)
        run_practice(trainer, pattern, name, loop, use_countdown)
        choice = choose_pattern(trainer)


# ─── Main ────────────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Clap Rhythm Trainer")
    parser.add_argument("--mode", choices=["quiz", "practice"], default=None)
    parser.add_argument("--bpm", type=int, default=None)
    parser.add_argument("--sound", choices=sorted(TIMBRES), default=None)
    parser.add_argument("--volume", type=float, default=None, help="master volume in dB")
    parser.add_argument("--loop", action="store_true", help="loop practice playback")
    parser.add_argument("--no-pickup", dest="use_pickup", action="store_false")
    parser.add_argument("--no-countdown", dest="countdown", action="store_false")
    parser.add_argument("--device", default=None, help="input device name or index")
    parser.add_argument("--verbose", action="store_true")
    parser.set_defaults(use_pickup=True, countdown=True)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if args.bpm is not None and not MIN_BPM <= args.bpm <= MAX_BPM:
        print(f"  {RED}BPM must be between {MIN_BPM} and {MAX_BPM}.{RST}")
        sys.exit(2)

    sys.stdout.write("\033[2J\033[H")
    print()
    print(f"  {BOLD}👏  Clap Rhythm Trainer{RST}")
    print(f"  {DIM}{'━' * 50}{RST}")
    print()
    print(f"  Hear an 8-beat rhythm, then clap it back.")
    print(f"  Every sixteenth note is judged within ±100 ms.")
    print()

    mode = args.mode
    if mode is None:
        print(f"  {BOLD}Choose a mode:{RST}")
        print()
        print(f"    {YELLOW}1{RST}  {BOLD}Quiz{RST}      listen for 8 beats, clap for 8 beats, get scored")
        print(f"    {GREEN}2{RST}  {BOLD}Practice{RST}  just play the pattern")
        print()
        while True:
            raw = input(f"  Select mode [{YELLOW}1{RST}/{GREEN}2{RST}]: ").strip()
            if raw in ("1", "2"):
                mode = "quiz" if raw == "1" else "practice"
                break
            print(f"  {RED}Please enter 1 or 2.{RST}")

    device = args.device
    if device is not None and device.isdigit():
        device = int(device)
    bpm = args.bpm if args.bpm is not None else ask_bpm(TrainerConfig().bpm)
    config = TrainerConfig.from_env(
        bpm=bpm,
        timbre=args.sound,
        volume_db=args.volume,
        use_pickup=args.use_pickup,
        device=device,
    )

    trainer = Trainer(config)
    trainer.output.start()
    try:
        if mode == "quiz":
            quiz_mode(trainer, args.countdown)
        else:
            practice_mode(trainer, args.loop, args.countdown)
    except KeyboardInterrupt:
        pass
    finally:
        trainer.shutdown()

    print_history(trainer, count=5)
    print()
    print(f"  👋  Happy clapping!")
    print()


if __name__ == "__main__":
    main()
