#!/usr/bin/env python3
"""
Civitas Quickstart Example

Demonstrates the complete flow:
1. Register and verify a citizen
2. Publish a quiz and grade a submission
3. Claim the education reward, then see a second quiz refused by the
   cooldown and a repeat claim refused as already claimed
4. Verify the audit journal

Run:
    pip install civitas-engine
    python examples/civitas_quickstart.py

Receipts are persisted under $CIVITAS_HOME/journal (default ~/.civitas).
Or just run the built-in demo:
    civitas demo
"""
from __future__ import annotations

import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def main() -> int:
    from civitas import (
        BlockClock,
        IdentityRegistry,
        QuizEngine,
        RewardLedger,
        get_default_journal,
    )
    from civitas.digest import email_proof

    print("=" * 60)
    print("CIVITAS QUICKSTART")
    print("=" * 60)

    clock = BlockClock()
    journal = get_default_journal()
    registry = IdentityRegistry(clock=clock, journal=journal)
    quizzes = QuizEngine(clock=clock, journal=journal)
    ledger = RewardLedger(clock=clock, journal=journal)
    print(f"\n1. Journal trace: {journal.trace_id}")

    user_id = registry.register("citizen-bob", "Bob Voter", 27, "bob@civic.example").unwrap()
    registry.verify("citizen-bob", email_proof("bob@civic.example")).unwrap()
    ledger.register_participant("citizen-bob")
    print(f"2. Registered citizen-bob as user #{user_id}, verified={registry.is_verified('citizen-bob')}")

    questions = [
        {"text": "What is a ballot?", "options": ["A vote record", "A tax", "A law", "A court"], "correct_index": 0},
        {"text": "Who counts the votes?", "options": ["Anyone", "Election officials", "Nobody", "Voters"], "correct_index": 1},
    ]
    quizzes.create_quiz("citizen-bob", "Placeholder", "Quiz ids start at 0", questions[:1], 50)
    quiz_id = quizzes.create_quiz("citizen-bob", "Voting 101", "Ballots and counting", questions, 50).unwrap()

    outcome = quizzes.submit("citizen-bob", quiz_id, [0, 0])
    print(f"3. Quiz #{quiz_id}: score {outcome.value.score}, passed={outcome.value.passed}")

    clock.advance_to(100)
    claim = ledger.claim_education_reward("citizen-bob", quiz_id, outcome.value.score)
    print(f"4. Education reward at block {clock.height}: {claim.value} tokens")

    # A different quiz, passed inside the cooldown window
    next_quiz = quizzes.create_quiz("citizen-bob", "Voting 102", "Counting again", questions, 50).unwrap()
    clock.advance(10)
    second = quizzes.submit("citizen-bob", next_quiz, [0, 1])
    early = ledger.claim_education_reward("citizen-bob", next_quiz, second.value.score)
    print(f"5. Quiz #{next_quiz} claim at block {clock.height}: {early.error}")

    repeat = ledger.claim_education_reward("citizen-bob", quiz_id, outcome.value.score)
    print(f"6. Repeat claim for quiz #{quiz_id}: {repeat.error}")

    check = journal.verify()
    print(f"\n7. Journal: {check.count} receipts, chain {'intact' if check.passed else 'BROKEN'}")
    if journal.trace_file:
        print(f"   Written to {journal.trace_file}")
        print(f"   Inspect with: civitas journal show {journal.trace_id}")
    return 0 if check.passed else 1


if __name__ == "__main__":
    sys.exit(main())
