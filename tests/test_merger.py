from refugesync.merger import merge_leaderboards, merge_records
from refugesync.models import KillCounts, LeaderboardSnapshot, PlayerRecord

from conftest import ALICE, BOB


def test_cumulative_fields_take_the_max():
    partials = [
        PlayerRecord(uuid=ALICE, name="Alice", playtime=500, sessions=3, afk_time=10),
        PlayerRecord(uuid=ALICE, name="Alice", kills=KillCounts(mob=7, player=2), deaths=1),
        PlayerRecord(uuid=ALICE, name="Alice", playtime=100, deaths=4, kills=KillCounts(mob=1, player=5)),
    ]
    merged = merge_records(partials)[ALICE]

    assert merged.playtime == 500
    assert merged.sessions == 3
    assert merged.afk_time == 10
    assert merged.kills == KillCounts(mob=7, player=5)
    assert merged.deaths == 4


def test_dates_and_rank():
    partials = [
        PlayerRecord(uuid=ALICE, name="Alice", last_seen="2024-03-01T00:00:00.000Z", join_date="2023-05-01T00:00:00.000Z"),
        PlayerRecord(uuid=ALICE, name="Alice", last_seen="2024-04-01T00:00:00.000Z", join_date="2023-01-01T00:00:00.000Z", rank="vip"),
        PlayerRecord(uuid=ALICE, name="Alice", last_seen=None, join_date=None, rank=None),
    ]
    merged = merge_records(partials)[ALICE]

    assert merged.last_seen == "2024-04-01T00:00:00.000Z"
    assert merged.join_date == "2023-01-01T00:00:00.000Z"
    assert merged.rank == "vip"


def test_merge_keeps_each_leaderboard_order_and_score():
    snapshot = LeaderboardSnapshot(
        most_active=[
            PlayerRecord(uuid=BOB, name="Bob", playtime=900, activity_score=12.5),
            PlayerRecord(uuid=ALICE, name="Alice", playtime=800, activity_score=9.0),
        ],
        top_killers=[
            PlayerRecord(uuid=ALICE, name="Alice", kills=KillCounts(mob=3, player=9)),
        ],
        most_deaths=[],
        last_updated="2024-01-01T00:00:00.000Z",
    )
    merged = merge_leaderboards(snapshot)

    assert [r.uuid for r in merged.most_active] == [BOB, ALICE]
    assert merged.most_active[1].kills.player == 9
    assert merged.most_active[1].activity_score == 9.0
    assert merged.top_killers[0].playtime == 800
    assert merged.top_killers[0].activity_score is None
    assert merged.most_deaths == []
    assert merged.last_updated == "2024-01-01T00:00:00.000Z"


def test_placeholder_name_replaced_by_real_name():
    merged = merge_records(
        [PlayerRecord(uuid=ALICE, name=ALICE), PlayerRecord(uuid=ALICE, name="Alice")]
    )[ALICE]
    assert merged.name == "Alice"
