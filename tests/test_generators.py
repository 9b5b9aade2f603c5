import random

from clap_trainer.generators import (
    GENERATORS,
    generate_easy,
    generate_hard,
    generate_hell,
    generate_medium,
)


def _offsets(pattern):
    return {i % 4 for i in pattern.enabled_indices()}


def test_easy_uses_quarter_notes_only():
    for seed in range(50):
        pattern = generate_easy(random.Random(seed))
        indices = pattern.enabled_indices()
        assert 1 <= len(indices) <= 6
        assert _offsets(pattern) <= {0}


def test_medium_adds_only_the_a_after_a_beat():
    for seed in range(50):
        pattern = generate_medium(random.Random(seed))
        for i in pattern.enabled_indices():
            assert i % 4 in (0, 3)
            if i % 4 == 3:
                assert pattern[i - 3].enabled


def test_hard_never_uses_the_and():
    for seed in range(50):
        assert 2 not in _offsets(generate_hard(random.Random(seed)))


def test_hell_is_denser_than_easy():
    rng_a, rng_b = random.Random(7), random.Random(7)
    hell = sum(len(generate_hell(rng_a).enabled_indices()) for _ in range(30))
    easy = sum(len(generate_easy(rng_b).enabled_indices()) for _ in range(30))
    assert hell > easy


def test_seeded_generators_repeat():
    for name, generate in GENERATORS.items():
        assert generate(random.Random(3)) == generate(random.Random(3)), name
