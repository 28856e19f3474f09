from services.repository import Repository


def _card(title: str, value: str = "1") -> dict:
    return {"Title": title, "ValueLineOne": value, "ValueLineTwo": ""}


def _user(name: str, progress=()) -> dict:
    return {
        "UserName": name,
        "OverallStats": [_card("Total Time Watched")],
        "MovieStats": [_card("Total Movies", "3"), _card("Total Collections", "0")],
        "ShowStats": [_card("Total TV Series")],
        "ShowProgresses": list(progress),
    }


def test_task_log_lifecycle() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    # create task
    task_id = repo.create_task_log(
        name="Calculate statistics for all users",
        task_type="statistics",
        execution_type="manual"
    )
    assert isinstance(task_id, int) and task_id > 0

    latest = repo.get_latest_task()
    assert latest is not None
    assert latest["id"] == task_id
    assert latest["result"] == "RUNNING"

    payload = {"users_processed": 2, "duration_ms": 1500}
    repo.complete_task_log(task_id=task_id, result="SUCCESS", log_data=payload)

    completed = repo.get_latest_task()
    assert completed is not None
    assert completed["id"] == task_id
    assert completed["result"] == "SUCCESS"
    assert isinstance(completed.get("finished_at"), int)
    assert completed["duration_ms"] == 1500
    assert completed["log"] == payload


def test_latest_task_filters_by_type() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.create_task_log(name="other", task_type="maintenance", execution_type="manual")

    assert repo.get_latest_task() is None
    assert repo.get_latest_task("maintenance")["name"] == "other"


def test_replace_results_swaps_whole_result_set() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.replace_results(
        general={"TotalMovies": _card("Total Movies", "3")},
        user_stats=[_user("zed"), _user("amy")],
        last_updated=1718452800,
    )

    assert repo.list_user_names() == ["zed", "amy"]
    doc = repo.get_results()
    assert doc["LastUpdated"] == "2024-06-15T12:00:00+00:00"
    assert doc["TotalMovies"]["ValueLineOne"] == "3"
    assert [u["UserName"] for u in doc["UserStats"]] == ["zed", "amy"]

    repo.replace_results(
        general={"TotalUsers": _card("Total Users", "1")},
        user_stats=[_user("amy")],
        last_updated=1718539200,
        calculation_failed=True,
    )

    doc = repo.get_results()
    assert "TotalMovies" not in doc
    assert doc["CalculationFailed"] is True
    assert repo.list_user_names() == ["amy"]
    assert repo.get_user_stats("zed") is None


def test_user_stats_keep_card_order() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.replace_results(general={}, user_stats=[_user("amy")])

    stats = repo.get_user_stats("amy")
    assert [c["Title"] for c in stats["MovieStats"]] == ["Total Movies", "Total Collections"]
    assert stats["ShowProgresses"] == []


def test_replace_show_progress_leaves_other_stats() -> None:
    repo = Repository(database_url="sqlite:///:memory:")
    repo.replace_results(
        general={},
        user_stats=[_user("amy", progress=[{"Id": "s1", "PercentSeen": 10.0}])],
    )

    repo.replace_show_progress({
        "amy": [{"Id": "s1", "PercentSeen": 90.0}, {"Id": "s2", "PercentSeen": 0.0}],
        "bob": [{"Id": "s1", "PercentSeen": 50.0}],
    })

    assert [r["PercentSeen"] for r in repo.get_show_progress("amy")] == [90.0, 0.0]
    assert repo.get_user_stats("amy")["MovieStats"][0]["ValueLineOne"] == "3"
    assert repo.list_user_names() == ["amy", "bob"]
    assert repo.get_show_progress("nobody") == []


def test_empty_store_results() -> None:
    repo = Repository(database_url="sqlite:///:memory:")

    doc = repo.get_results()

    assert doc == {"LastUpdated": None, "CalculationFailed": False, "UserStats": []}
