import random
import time

import requests

BASE_URL = "http://127.0.0.1:8000"
TEACHER_ID = "educator"

CLASS = {
    "id": "class-7b",
    "name": "7B Mathematics",
    "subject": "Mathematics",
    "student_ids": ["alice", "peter", "marco", "lena", "sam"],
    "student_names": {
        "alice": "Alice",
        "peter": "Peter",
        "marco": "Marco",
        "lena": "Lena",
        "sam": "Sam",
    },
}

ASSIGNMENTS = {
    "quadratics-1": "Quadratic functions",
    "fractions-2": "Fraction practice",
}

# Score band per student: (low, high, hint probability, coach intent)
PROFILES = {
    "alice": (22, 35, 0.7, "support-seeking"),
    "peter": (25, 38, 0.6, None),
    "marco": (92, 100, 0.0, "enrichment-seeking"),
    "lena": (55, 68, 0.3, "mixed"),
    "sam": (28, 36, 0.5, None),
}


def test_connection():
    try:
        r = requests.get(f"{BASE_URL}/recommendations/stats", timeout=5)
        print(f"Server status: {r.status_code}")
        return r.status_code == 200
    except requests.RequestException as e:
        print(f"Server connection error: {e}")
        return False


def seed_class():
    r = requests.post(f"{BASE_URL}/classes", json=CLASS, timeout=10)
    if r.ok:
        print(f"Class {CLASS['name']} stored.")
    else:
        print(f"Class upload failed: {r.status_code}")
    return r.ok


def assign_work(assignment_id, title):
    r = requests.post(
        f"{BASE_URL}/assignments/{assignment_id}/assign",
        json={
            "teacher_id": TEACHER_ID,
            "student_ids": CLASS["student_ids"],
            "class_id": CLASS["id"],
            "title": title,
        },
        timeout=10,
    )
    if r.ok:
        print(f"Assigned {title} to {len(CLASS['student_ids'])} students.")
    else:
        print(f"Assignment failed for {assignment_id}: {r.status_code}")


def simulate_session(student_id, assignment_id, title, questions=8):
    low, high, hint_chance, intent = PROFILES[student_id]
    payload = {
        "student_id": student_id,
        "student_name": CLASS["student_names"][student_id],
        "assignment_id": assignment_id,
        "assignment_title": title,
        "status": "completed",
        "score": random.randint(low, high),
        "responses": [{"hint_used": random.random() < hint_chance} for _ in range(questions)],
        "coach_intent": intent,
        "help_request_count": random.randint(0, 4) if intent == "support-seeking" else 0,
    }
    r = requests.post(f"{BASE_URL}/sessions", json=payload, timeout=10)
    if r.ok:
        print(f"[{student_id}][{assignment_id}] scored {payload['score']}%")
    else:
        print(f"[{student_id}][{assignment_id}] error: {r.status_code}")
    time.sleep(0.1)


def run_seed():
    if not test_connection():
        return
    seed_class()

    for assignment_id, title in ASSIGNMENTS.items():
        assign_work(assignment_id, title)
        for student_id in CLASS["student_ids"]:
            simulate_session(student_id, assignment_id, title)

    r = requests.post(
        f"{BASE_URL}/recommendations/refresh",
        json={"teacher_id": TEACHER_ID},
        timeout=30,
    )
    if r.ok:
        summary = r.json()
        print(f"\nGenerated {summary['generated']} insights ({summary['skipped_duplicates']} duplicates skipped)")
    else:
        print(f"Refresh failed: {r.status_code}")
        return

    r = requests.get(f"{BASE_URL}/attention", params={"teacher_id": TEACHER_ID}, timeout=10)
    if r.ok:
        for student in r.json()["students"]:
            print(f"  {student['student_id']}: {student['reason']}")
    else:
        print("Failed to get attention state")


if __name__ == "__main__":
    run_seed()
