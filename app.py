import os
from typing import List, Optional

import pandas as pd
import streamlit as st
import sqlalchemy
from sqlalchemy import text
import plotly.express as px


st.set_page_config(page_title="XES Explorer", layout="wide")


# Same default as the importer CLI, relative to the working directory
DEFAULT_DATABASE_URI = "sqlite:///xes_data.db"

EVENT_LOG_TABLES = [
    "log", "extension", "attribute", "classifier", "trace", "event", "event_collection",
    "log_has_trace", "log_has_attribute", "trace_has_attribute", "trace_has_event",
    "event_has_attribute",
]


def default_database_uri() -> str:
    return os.environ.get("XES_DATABASE_URI") or DEFAULT_DATABASE_URI


@st.cache_resource
def get_engine(db_url_or_path: Optional[str] = None):
    """Create a SQLAlchemy engine from a URL, or from a path to a local sqlite file."""
    if not db_url_or_path:
        raise ValueError("No database URL provided. Set XES_DATABASE_URI or enter a connection string.")

    if os.path.exists(db_url_or_path) and "://" not in db_url_or_path:
        url = f"sqlite:///{os.path.abspath(db_url_or_path)}"
    else:
        url = db_url_or_path

    engine = sqlalchemy.create_engine(url)
    # quick test connection; let exceptions bubble to caller
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
    return engine


@st.cache_data(ttl=300)
def list_tables(_engine) -> List[str]:
    """Return the event-log tables present in the database."""
    inspector = sqlalchemy.inspect(_engine)
    existing = set(inspector.get_table_names())
    return [t for t in EVENT_LOG_TABLES if t in existing]


@st.cache_data(ttl=300)
def table_row_count(_engine, table_name: str) -> int:
    q = text(f"SELECT COUNT(*) as cnt FROM \"{table_name}\"")
    with _engine.connect() as conn:
        r = conn.execute(q).mappings().first()
        return int(r["cnt"]) if r else 0


@st.cache_data(ttl=300)
def read_table(_engine, table_name: str, limit: int = 1000) -> pd.DataFrame:
    q = f'SELECT * FROM "{table_name}" LIMIT {int(limit)}'
    with _engine.connect() as conn:
        return pd.read_sql_query(q, conn)


@st.cache_data(ttl=300)
def read_logs(_engine) -> pd.DataFrame:
    q = (
        "SELECT l.id, l.name, COUNT(lt.trace_id) AS traces "
        "FROM log l LEFT JOIN log_has_trace lt ON lt.log_id = l.id "
        "GROUP BY l.id, l.name ORDER BY l.id"
    )
    with _engine.connect() as conn:
        return pd.read_sql_query(q, conn)


@st.cache_data(ttl=300)
def read_events_per_trace(_engine) -> pd.DataFrame:
    q = "SELECT trace_id, COUNT(*) AS events FROM trace_has_event GROUP BY trace_id"
    with _engine.connect() as conn:
        return pd.read_sql_query(q, conn)


@st.cache_data(ttl=300)
def read_attribute_values(_engine, key: str, limit: int = 50) -> pd.DataFrame:
    """Most frequent event values of one attribute key (e.g. concept:name activities)."""
    q = text(
        'SELECT eha."value" AS "value", COUNT(*) AS occurrences '
        "FROM event_has_attribute eha JOIN attribute a ON eha.attr_id = a.id "
        'WHERE a."key" = :key GROUP BY eha."value" ORDER BY occurrences DESC LIMIT :limit'
    )
    with _engine.connect() as conn:
        return pd.read_sql_query(q, conn, params={"key": key, "limit": int(limit)})


@st.cache_data(ttl=300)
def read_attribute_keys(_engine) -> List[str]:
    q = 'SELECT DISTINCT "key" FROM attribute ORDER BY "key"'
    with _engine.connect() as conn:
        return [row[0] for row in conn.execute(text(q))]


def sidebar_connection_controls():
    st.sidebar.header("Connection")
    db_input = st.sidebar.text_input("Database URL or sqlite path", value=default_database_uri())
    limit = st.sidebar.number_input("Row limit (table preview)", value=2000, min_value=100, max_value=200000, step=100)
    return db_input, limit


def main():
    st.title("XES Explorer")
    st.markdown("Browse event logs imported with the XES importer.")

    db_input, preview_limit = sidebar_connection_controls()

    try:
        engine = get_engine(db_input)
    except Exception as e:
        st.error(f"Unable to connect to the database: {e}")
        return

    try:
        tables = list_tables(engine)
    except Exception as e:
        st.error(f"Error reading database schema: {e}")
        return

    if not tables:
        st.warning("No event-log tables found. Run `python main.py import <file.xes>` first.")
        return

    # Top row: quick stats
    with st.container():
        col1, col2, col3, col4 = st.columns(4)
        for col, table_name in zip((col1, col2, col3, col4), ("log", "trace", "event", "attribute")):
            if table_name in tables:
                col.metric(table_name.capitalize(), f"{table_row_count(engine, table_name):,}")

    st.markdown("---")

    if {"log", "log_has_trace"} <= set(tables):
        st.markdown("### Logs")
        st.dataframe(read_logs(engine), use_container_width=True)

    c1, c2 = st.columns(2)

    with c1:
        if "trace_has_event" in tables:
            per_trace = read_events_per_trace(engine)
            if not per_trace.empty:
                fig = px.histogram(per_trace, x="events", nbins=50, title="Events per trace")
                st.plotly_chart(fig, use_container_width=True)
            else:
                st.info("No events imported yet")

    with c2:
        if {"attribute", "event_has_attribute"} <= set(tables):
            keys = read_attribute_keys(engine)
            if keys:
                default_index = keys.index("concept:name") if "concept:name" in keys else 0
                key = st.selectbox("Event attribute", keys, index=default_index)
                topn = st.slider("Top N values", min_value=3, max_value=50, value=10)
                values = read_attribute_values(engine, key, limit=topn)
                if not values.empty:
                    fig2 = px.bar(values, x="value", y="occurrences", title=f"Top {topn}: {key}")
                    st.plotly_chart(fig2, use_container_width=True)
                else:
                    st.info(f"No event values recorded for {key}")

    st.markdown("---")
    st.markdown("### Explore Tables")

    table = st.selectbox("Select table", tables, index=tables.index("trace_has_event") if "trace_has_event" in tables else 0)
    show_sql = st.checkbox("Show SQL preview")

    try:
        df = read_table(engine, table, limit=preview_limit)
    except Exception as e:
        st.error(f"Error reading table '{table}': {e}")
        return

    st.subheader(f"{table} - preview {len(df)} rows")
    if show_sql:
        st.code(f'SELECT * FROM "{table}" LIMIT {int(preview_limit)}')

    text_filter = st.text_input("Search (applies to string columns)")
    if text_filter:
        str_cols = df.select_dtypes(include=["object"]).columns.tolist()
        if str_cols:
            mask = pd.Series(False, index=df.index)
            for c in str_cols:
                mask = mask | df[c].astype(str).str.contains(text_filter, case=False, na=False)
            df = df[mask]

    st.dataframe(df, use_container_width=True)

    csv = df.to_csv(index=False).encode("utf-8")
    st.download_button("Download preview CSV", csv, file_name=f"{table}_preview.csv", mime="text/csv")


if __name__ == "__main__":
    main()
