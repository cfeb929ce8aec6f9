"""Endpoint tests for the quiz / spaced repetition router."""

import sqlite3
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from studynode import create_app
from studynode.config import settings


def _ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _set_next_review(db_path, card_id, when: datetime) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "UPDATE flashcards SET next_review = ? WHERE id = ?",
            (when.astimezone(timezone.utc).isoformat(timespec="microseconds"), card_id),
        )


class TestCards:
    def test_new_card_has_default_state(self, client, make_card):
        before = datetime.now(timezone.utc)
        card = make_card()

        assert card["ease_factor"] == 2.5
        assert card["interval"] == 0
        assert card["repetitions"] == 0
        assert card["last_reviewed_at"] is None
        assert before <= _ts(card["next_review"]) <= datetime.now(timezone.utc)

    def test_card_needs_existing_deck(self, client):
        res = client.post(
            "/quiz/cards", json={"deck_id": "missing", "question": "q", "answer": "a"}
        )
        assert res.status_code == 404

    def test_edit_and_delete(self, client, make_card):
        card = make_card()

        res = client.patch(f"/quiz/{card['id']}", json={"explanation": "Made by mitochondria"})
        assert res.status_code == 200
        assert res.json()["explanation"] == "Made by mitochondria"
        assert res.json()["question"] == card["question"]

        assert client.delete(f"/quiz/{card['id']}").status_code == 204
        assert client.get(f"/quiz/{card['id']}").status_code == 404
        assert client.delete(f"/quiz/{card['id']}").status_code == 404

    def test_list_filters_by_deck(self, client, make_card):
        make_card()
        make_card(question="Other")
        other = client.post("/decks/", json={"name": "Chemistry"}).json()
        client.post(
            "/quiz/cards", json={"deck_id": other["id"], "question": "pH?", "answer": "7"}
        )

        assert client.get("/quiz/cards").json()["total"] == 3
        assert client.get("/quiz/cards", params={"deck_id": other["id"]}).json()["total"] == 1


class TestReview:
    def test_graduation_through_api(self, client, make_card):
        card = make_card()

        first = client.post(f"/quiz/{card['id']}/review", json={"quality": "good"})
        assert first.status_code == 200
        body = first.json()
        assert body["repetitions"] == 1
        assert body["interval"] == 1
        assert body["correct"] is True
        assert body["phase"] == "learning"
        assert _ts(body["next_review"]) - _ts(body["last_reviewed_at"]) == timedelta(days=1)

        second = client.post(f"/quiz/{card['id']}/review", json={"quality": 4}).json()
        assert second["repetitions"] == 2
        assert second["interval"] == 6
        assert second["phase"] == "review"

        third = client.post(f"/quiz/{card['id']}/review", json={"quality": 4}).json()
        assert third["interval"] == 15

        stored = client.get(f"/quiz/{card['id']}").json()
        assert stored["repetitions"] == 3
        assert stored["interval"] == 15
        assert stored["version"] == 3
        assert _ts(stored["next_review"]) == _ts(third["next_review"])

    def test_lapse(self, client, make_card):
        card = make_card()
        for _ in range(3):
            client.post(f"/quiz/{card['id']}/review", json={"quality": "easy"})

        res = client.post(f"/quiz/{card['id']}/review", json={"quality": "again"}).json()
        assert res["repetitions"] == 0
        assert res["interval"] == 1
        assert res["correct"] is False
        assert res["ease_factor"] == pytest.approx(2.8 - 0.2)

    @pytest.mark.parametrize("quality", [6, -1, "perfect", "4.5", "²", "9" * 5000])
    def test_invalid_grade_is_rejected_and_state_untouched(self, client, make_card, quality):
        card = make_card()

        res = client.post(f"/quiz/{card['id']}/review", json={"quality": quality})
        assert res.status_code == 422

        stored = client.get(f"/quiz/{card['id']}").json()
        assert stored["repetitions"] == 0
        assert stored["version"] == 0

    def test_unknown_card(self, client):
        res = client.post("/quiz/nope/review", json={"quality": 4})
        assert res.status_code == 404

    def test_corrupt_state_then_reset(self, client, make_card, db_path):
        card = make_card()
        with sqlite3.connect(db_path) as conn:
            conn.execute("UPDATE flashcards SET ease_factor = 0 WHERE id = ?", (card["id"],))

        res = client.post(f"/quiz/{card['id']}/review", json={"quality": 4})
        assert res.status_code == 500

        reset = client.post(f"/quiz/{card['id']}/reset")
        assert reset.status_code == 200
        assert reset.json()["ease_factor"] == 2.5
        assert reset.json()["repetitions"] == 0

        res = client.post(f"/quiz/{card['id']}/review", json={"quality": 4})
        assert res.status_code == 200

    def test_write_conflict_exhausts_retries(self, client, make_card):
        card = make_card()
        with patch("studynode.routers.quiz.apply_review", new=AsyncMock(return_value=None)) as mock:
            res = client.post(f"/quiz/{card['id']}/review", json={"quality": 4})

        assert res.status_code == 409
        assert mock.await_count == 4
        stored = client.get(f"/quiz/{card['id']}").json()
        assert stored["repetitions"] == 0
        assert stored["version"] == 0

    def test_stale_version_is_not_written(self, client, make_card):
        card = make_card()
        client.post(f"/quiz/{card['id']}/review", json={"quality": 5})

        from studynode.db import sqlite as db_module

        real_get = db_module.get_flashcard
        stale = {"done": False}

        async def get_stale_once(db, card_id):
            current = await real_get(db, card_id)
            if not stale["done"]:
                stale["done"] = True
                return current.model_copy(update={"version": current.version - 1})
            return current

        with patch("studynode.routers.quiz.get_flashcard", new=get_stale_once):
            res = client.post(f"/quiz/{card['id']}/review", json={"quality": 5})

        assert res.status_code == 200
        assert res.json()["repetitions"] == 2
        assert client.get(f"/quiz/{card['id']}").json()["version"] == 2


class TestAnswer:
    def test_correct_answer(self, client, make_card):
        card = make_card(answer="Energy currency", explanation="ATP stores energy")

        res = client.post(f"/quiz/{card['id']}/answer", json={"selected_answer": "energy  currency"})
        assert res.status_code == 200
        body = res.json()
        assert body["correct"] is True
        assert body["explanation"] == "ATP stores energy"
        assert body["review"]["repetitions"] == 1
        assert body["review"]["quality"] == 4

    def test_wrong_answer_is_a_lapse(self, client, make_card):
        card = make_card(answer="Energy currency")
        client.post(f"/quiz/{card['id']}/review", json={"quality": 5})

        body = client.post(f"/quiz/{card['id']}/answer", json={"selected_answer": "DNA"}).json()
        assert body["correct"] is False
        assert body["correct_answer"] == "Energy currency"
        assert body["review"]["repetitions"] == 0
        assert body["review"]["interval"] == 1


class TestQueues:
    def test_due_queue_order_and_nearest(self, client, make_card, db_path):
        now = datetime.now(timezone.utc)
        a = make_card(question="a")
        b = make_card(question="b")
        c = make_card(question="c")
        _set_next_review(db_path, a["id"], now - timedelta(hours=1))
        _set_next_review(db_path, b["id"], now + timedelta(hours=2))
        _set_next_review(db_path, c["id"], now - timedelta(hours=3))

        body = client.get("/quiz/due").json()
        assert [card["id"] for card in body["items"]] == [c["id"], a["id"]]
        assert body["total_due"] == 2
        assert body["nearest"]["id"] == c["id"]

    def test_nothing_due_reports_nearest_future_card(self, client, make_card, db_path):
        now = datetime.now(timezone.utc)
        a = make_card()
        b = make_card()
        _set_next_review(db_path, a["id"], now + timedelta(days=3))
        _set_next_review(db_path, b["id"], now + timedelta(days=1))

        body = client.get("/quiz/due").json()
        assert body["items"] == []
        assert body["total_due"] == 0
        assert body["nearest"]["id"] == b["id"]

    def test_session(self, client, deck, make_card):
        for i in range(5):
            make_card(question=f"q{i}", answer=f"answer {i}")

        res = client.get(f"/quiz/session/{deck['id']}", params={"limit": 3, "seed": 11})
        assert res.status_code == 200
        body = res.json()
        assert body["deck_name"] == "Biology"
        assert body["total_questions"] == 3
        assert body["statistics"] == {"total_cards": 5, "learned_cards": 0, "due_for_review": 5}
        for question in body["questions"]:
            assert len(question["options"]) == 4
            assert question["correct_answer"] in [o["text"] for o in question["options"]]

    def test_session_unknown_deck(self, client):
        assert client.get("/quiz/session/missing").status_code == 404

    def test_stats(self, client, deck, make_card):
        card = make_card()
        make_card()
        client.post(f"/quiz/{card['id']}/review", json={"quality": 4})
        client.post(f"/quiz/{card['id']}/review", json={"quality": 4})

        stats = client.get("/quiz/stats").json()
        assert stats["total_cards"] == 2
        assert stats["due_now"] == 1
        assert stats["learned_cards"] == 1
        assert stats["per_deck"] == [
            {"deck_id": deck["id"], "name": "Biology", "total": 2, "due": 1, "learned": 1}
        ]

    def test_match_session(self, client, deck, make_card, db_path):
        now = datetime.now(timezone.utc)
        cards = [make_card(question=f"q{i}", answer=f"answer {i}") for i in range(4)]
        _set_next_review(db_path, cards[0]["id"], now + timedelta(days=1))
        _set_next_review(db_path, cards[1]["id"], now - timedelta(hours=2))
        _set_next_review(db_path, cards[2]["id"], now - timedelta(hours=5))
        _set_next_review(db_path, cards[3]["id"], now + timedelta(days=4))

        res = client.get(f"/quiz/match/{deck['id']}", params={"limit": 3, "seed": 4})
        assert res.status_code == 200
        body = res.json()
        assert body["deck_name"] == "Biology"
        assert [q["id"] for q in body["questions"]] == [
            cards[2]["id"], cards[1]["id"], cards[0]["id"],
        ]
        assert sorted(a["answer"] for a in body["answers"]) == [
            "answer 0", "answer 1", "answer 2",
        ]

    def test_match_unknown_deck(self, client):
        assert client.get("/quiz/match/missing").status_code == 404
        res = client.post(
            "/quiz/match/missing/answer",
            json={"matches": [{"question_id": "x", "answer_id": "y"}]},
        )
        assert res.status_code == 404


class TestMatchAnswer:
    def _session(self, client, deck):
        body = client.get(f"/quiz/match/{deck['id']}", params={"seed": 1}).json()
        return {a["answer"]: a["id"] for a in body["answers"]}

    def test_pairs_are_graded_good_or_again(self, client, deck, make_card):
        right = make_card(question="Powerhouse of the cell?", answer="Mitochondria")
        wrong = make_card(question="Site of protein synthesis?", answer="Ribosome")
        answer_ids = self._session(client, deck)

        res = client.post(
            f"/quiz/match/{deck['id']}/answer",
            json={
                "matches": [
                    {"question_id": right["id"], "answer_id": answer_ids["Mitochondria"]},
                    {"question_id": wrong["id"], "answer_id": answer_ids["Mitochondria"]},
                ]
            },
        )
        assert res.status_code == 200
        body = res.json()
        assert body["correct_matches"] == 1
        assert body["total_matches"] == 2

        by_card = {r["question_id"]: r for r in body["results"]}
        assert by_card[right["id"]]["correct"] is True
        assert by_card[right["id"]]["review"]["quality"] == 4
        assert by_card[wrong["id"]]["correct"] is False
        assert by_card[wrong["id"]]["correct_answer"] == "Ribosome"
        assert by_card[wrong["id"]]["review"]["quality"] == 0

        assert client.get(f"/quiz/{right['id']}").json()["repetitions"] == 1
        stored = client.get(f"/quiz/{wrong['id']}").json()
        assert stored["repetitions"] == 0
        assert stored["version"] == 1

    def test_answer_ids_ignore_case_and_spacing(self, client, deck, make_card):
        card = make_card(answer="Energy currency")
        answer_ids = self._session(client, deck)
        card_two = make_card(question="Same answer, other wording", answer="  energy  CURRENCY")

        res = client.post(
            f"/quiz/match/{deck['id']}/answer",
            json={
                "matches": [
                    {"question_id": card["id"], "answer_id": answer_ids["Energy currency"]},
                    {"question_id": card_two["id"], "answer_id": answer_ids["Energy currency"]},
                ]
            },
        )
        assert res.json()["correct_matches"] == 2

    @pytest.mark.parametrize("problem", ["other_deck", "duplicate", "unknown_card"])
    def test_bad_submission_grades_nothing(self, client, deck, make_card, problem):
        card = make_card(answer="Mitochondria")
        answer_id = self._session(client, deck)["Mitochondria"]
        pairs = [{"question_id": card["id"], "answer_id": answer_id}]

        if problem == "other_deck":
            other = client.post("/decks/", json={"name": "Chemistry"}).json()
            stranger = client.post(
                "/quiz/cards",
                json={"deck_id": other["id"], "question": "pH of water?", "answer": "7"},
            ).json()
            pairs.append({"question_id": stranger["id"], "answer_id": answer_id})
        elif problem == "duplicate":
            pairs.append(dict(pairs[0]))
        else:
            pairs.append({"question_id": "missing", "answer_id": answer_id})

        res = client.post(f"/quiz/match/{deck['id']}/answer", json={"matches": pairs})
        assert res.status_code == 422

        stored = client.get(f"/quiz/{card['id']}").json()
        assert stored["repetitions"] == 0
        assert stored["version"] == 0

    def test_empty_submission_rejected(self, client, deck):
        res = client.post(f"/quiz/match/{deck['id']}/answer", json={"matches": []})
        assert res.status_code == 422


class TestSchedulerSettings:
    def test_bad_settings_fail_at_startup(self, db_path, monkeypatch):
        monkeypatch.setattr(settings, "lapse_interval", 0)

        with pytest.raises(ValueError, match="lapse_interval"):
            with TestClient(create_app()):
                pass

    def test_max_interval_setting_caps_reviews(self, db_path, monkeypatch):
        monkeypatch.setattr(settings, "max_interval", 10)

        with TestClient(create_app()) as client:
            deck = client.post("/decks/", json={"name": "Biology"}).json()
            card = client.post(
                "/quiz/cards",
                json={"deck_id": deck["id"], "question": "q", "answer": "a"},
            ).json()
            for _ in range(3):
                res = client.post(f"/quiz/{card['id']}/review", json={"quality": 5})

        assert res.json()["interval"] == 10
