"""
Bundled aggregate view definitions.

The SELECT statements use only SQL understood by both SQLite and
PostgreSQL so either backend can install them. Deployments that manage
their views elsewhere simply list other names under [refresh] views.
"""

from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass(frozen=True)
class ViewDefinition:
    """Name, query and unique key of one aggregate view."""
    name: str
    select_sql: str
    unique_columns: Tuple[str, ...]


SAT_COMMON_VIEW_DIFFERENCE = ViewDefinition(
    name='sat_common_view_difference',
    select_sql="""
        SELECT a.mjd AS mjd,
               a.sttime AS sttime,
               a.sat AS common_satellite,
               a.source AS source1,
               b.source AS source2,
               AVG(a.refsys) AS avg1,
               AVG(b.refsys) AS avg2,
               AVG(a.refsys) - AVG(b.refsys) AS avg_refsys_difference
        FROM measurements a
        JOIN measurements b
          ON a.sat = b.sat
         AND a.mjd = b.mjd
         AND a.sttime = b.sttime
         AND a.source < b.source
        GROUP BY a.mjd, a.sttime, a.sat, a.source, b.source
    """,
    unique_columns=('mjd', 'sttime', 'common_satellite', 'source1', 'source2'),
)

STATION_SESSION_COUNTS = ViewDefinition(
    name='station_session_counts',
    select_sql="""
        SELECT source AS source,
               mjd AS mjd,
               COUNT(DISTINCT sttime) AS session_count,
               COUNT(*) AS track_count
        FROM measurements
        GROUP BY source, mjd
    """,
    unique_columns=('source', 'mjd'),
)

BUNDLED_VIEWS: Dict[str, ViewDefinition] = {
    view.name: view for view in (SAT_COMMON_VIEW_DIFFERENCE, STATION_SESSION_COUNTS)
}
