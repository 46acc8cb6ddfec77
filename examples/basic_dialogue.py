"""Basic dialogue example for Roleplay State.

This example demonstrates:
- Activating an engine for a character with lore
- Turning user messages into tracked actions
- Validating replies and retrying with guidance
- Reading scene state and memory after each turn
- Saving a session snapshot to SQLite

Note: This example uses a placeholder for LLM generation.
Replace PlaceholderProvider.complete with your actual LLM calls.
"""

from roleplay_state import (
    CharacterProfile,
    LoreEntry,
    RoleplayEngine,
    SessionStore,
    run_turn,
)


class PlaceholderProvider:
    """Placeholder for an actual LLM client.

    In production, you would:
    1. Send ``messages`` to your chat completion API
    2. Pass temperature and max_tokens through
    3. Return the assistant text
    """

    def __init__(self):
        self.replies = [
            # Fails validation: breaks character, so the driver retries
            "As an AI, I can't pretend to be a barkeep.",
            'Mara looks up as you walk into the tavern and sets down a mug. '
            '"Depends who is asking," she says, her expression showed amusement.',
            "Mara's hand closes around the key you slide across the bar. "
            "She tenses, then pockets it and nods toward the back stairs.",
        ]

    def complete(self, messages, *, temperature, max_tokens):
        return self.replies.pop(0)


def main():
    engine = RoleplayEngine()
    engine.set_character(
        CharacterProfile(
            id="mara",
            name="Mara",
            description="Keeper of the Gilded Anchor, a dockside tavern.",
            personality="Wry, watchful, slow to trust",
            scenario="A stranger arrives on a stormy night.",
            memory_bank=["Owes the Harbor Guild a favor"],
        )
    )
    engine.update_location(name="The Gilded Anchor", description="Low beams, smoke, a long oak bar")

    lore = [
        LoreEntry(
            name="Harbor Guild",
            content="The Harbor Guild controls every berth on the docks.",
            category="faction",
            importance=7,
            keys=["guild", "docks"],
        ),
    ]

    provider = PlaceholderProvider()
    history = []

    messages = [
        "*walks into the tavern* Hello there, who's in charge?",
        "*slides a brass key across the bar* The guild sent me.",
    ]
    for message in messages:
        result = run_turn(engine, provider, message, history=history, lore=lore)

        print(f"\nUser: {message}")
        print(f"Mara: {result.response}")
        print(
            f"  score={result.validation.score} "
            f"regenerations={result.regeneration_count} "
            f"resolved={len(result.resolved_action_ids)}/{len(result.new_action_ids)}"
        )

        history += [
            {"role": "user", "content": message},
            {"role": "assistant", "content": result.response},
        ]

    print("\n--- Scene ---")
    print(engine.scene.summary())
    print(engine.short_term_summary())

    print("\n--- Actions ---")
    print(engine.action_statistics())

    # Persist and restore the whole session
    with SessionStore("example_sessions.db") as store:
        store.save("example", engine.export_state())
        restored = RoleplayEngine()
        restored.import_state(store.load("example"))
        print(f"\nRestored turn count: {restored.turn_count}")


if __name__ == "__main__":
    main()
