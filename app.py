"""
Streamlit operator console for the Marketing Autopilot.

Run autopilot cycles over mock accounts, review pending approvals, inspect
the audit trail and pull the emergency brake.
"""

import streamlit as st
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from autopilot.api.knowledge_store import MockKnowledgeStore
from autopilot.errors import GovernanceConflict
from autopilot.models.config import AutonomyLevel, RiskTolerance
from autopilot.models.cycle import CycleStatus
from autopilot.orchestrator import AutopilotOrchestrator
from autopilot.settings import AutopilotSettings


# Page configuration
st.set_page_config(
    page_title="Marketing Autopilot",
    page_icon="🤖",
    layout="wide",
    initial_sidebar_state="expanded"
)

STATUS_COLORS = {
    "success": "#28a745",
    "skipped": "#ffc107",
    "failed": "#dc3545",
}


def initialize_session_state():
    """Initialize Streamlit session state."""
    if 'orchestrator' not in st.session_state:
        st.session_state.orchestrator = None
    if 'results' not in st.session_state:
        st.session_state.results = []


def build_orchestrator(num_accounts, seed, autonomy_level, risk_tolerance):
    """Create an orchestrator over fresh mock accounts and enable them."""
    settings = AutopilotSettings.from_env()
    orchestrator = AutopilotOrchestrator(
        settings=settings,
        knowledge_store=MockKnowledgeStore(num_accounts=num_accounts, seed=seed),
    )
    for account_id in orchestrator.enable_accounts(autonomy_level=autonomy_level, changed_by="console"):
        orchestrator.governance.configs.update_config(
            account_id, lambda c: setattr(c, "risk_tolerance", risk_tolerance)
        )
    return orchestrator


def run_cycles(orchestrator, dry_run):
    """Run one cycle per account with a progress bar."""
    account_ids = orchestrator.knowledge_store.list_accounts()
    progress_bar = st.progress(0)
    status_text = st.empty()

    results = []
    for i, account_id in enumerate(account_ids):
        status_text.text(f"Running cycle for {account_id}... ({i+1}/{len(account_ids)})")
        results.append(orchestrator.run_account(account_id, dry_run=dry_run))
        progress_bar.progress((i + 1) / len(account_ids))

    status_text.text("✅ Cycles complete!")
    return results


def create_status_chart(results):
    """Create pie chart showing cycle status distribution."""
    counts = {status.value: sum(1 for r in results if r.status == status) for status in CycleStatus}

    fig = go.Figure(data=[go.Pie(
        labels=[s.capitalize() for s in counts],
        values=list(counts.values()),
        marker_colors=[STATUS_COLORS[s] for s in counts],
        hole=0.4
    )])
    fig.update_layout(title="Cycle Status Distribution", height=300, showlegend=True)
    return fig


def create_activity_chart(results):
    """Create grouped bar chart of per-account cycle activity."""
    df = pd.DataFrame([
        {
            "Account": r.account_id,
            "Hypotheses": r.hypotheses_generated,
            "Experiments": r.experiments_created,
            "Applied": r.updates_applied,
            "Approvals": r.approvals_requested,
            "Blocked": r.changes_blocked,
        }
        for r in results
    ])
    df = df.melt(id_vars="Account", var_name="Metric", value_name="Count")

    fig = px.bar(df, x="Account", y="Count", color="Metric", barmode="group",
                 title="Cycle Activity by Account")
    fig.update_layout(height=400)
    return fig


def create_health_chart(results):
    """Create scatter plot of knowledge health vs performance score."""
    df = pd.DataFrame([
        {
            "Account": r.account_id,
            "Knowledge Health": r.context_health_score,
            "Performance": r.performance_score,
            "Status": r.status.value,
            "Signals": r.signals_detected,
        }
        for r in results
    ])

    fig = px.scatter(
        df,
        x="Knowledge Health",
        y="Performance",
        color="Status",
        color_discrete_map=STATUS_COLORS,
        size=[12] * len(df),
        hover_data=["Account", "Signals"],
        title="Knowledge Health vs Performance"
    )
    fig.add_vline(x=40, line_dash="dash", line_color="red", annotation_text="Readiness floor")
    fig.update_layout(height=400)
    return fig


def render_approvals(orchestrator, account_id):
    """Pending approvals with approve / reject buttons."""
    pending = orchestrator.governance.approvals.get_pending_approvals(account_id)
    if not pending:
        st.info("No pending approvals")
        return

    for request in pending:
        with st.expander(f"📝 {request.title} ({request.priority.value.upper()})"):
            st.markdown(f"**Description:** {request.description}")
            st.markdown(f"**Reasoning:** {request.reasoning}")
            st.markdown(f"**Expected impact:** {request.expected_impact}")
            if request.rules_triggered:
                st.markdown(f"**Rules:** {', '.join(request.rules_triggered)}")
            st.json(request.proposed_change)

            col1, col2 = st.columns(2)
            try:
                if col1.button("✅ Approve", key=f"approve_{request.id}"):
                    orchestrator.approve(account_id, request.id, reviewer="console")
                    st.success("Approved")
                if col2.button("❌ Reject", key=f"reject_{request.id}"):
                    orchestrator.reject(account_id, request.id, reviewer="console")
                    st.warning("Rejected")
            except GovernanceConflict as e:
                st.error(str(e))


def render_changes(orchestrator, account_id):
    """Applied changes with a revert button each."""
    changes = orchestrator.governance.changes.get_change_history(account_id, include_reverted=True)
    if not changes:
        st.info("No applied changes")
        return

    for record in changes:
        label = f"{record.type.value} by {record.applied_by} at {record.timestamp:%Y-%m-%d %H:%M}"
        if record.reverted:
            st.markdown(f"~~{label}~~ (reverted by {record.reverted_by})")
            continue
        col1, col2 = st.columns([4, 1])
        col1.markdown(label)
        if col2.button("↩️ Revert", key=f"revert_{record.id}"):
            try:
                orchestrator.revert(account_id, record.id, reverted_by="console")
                st.success("Reverted")
            except GovernanceConflict as e:
                st.error(str(e))


def render_audit_log(orchestrator, account_id):
    entries = orchestrator.governance.audit.get_audit_log(account_id, limit=200)
    if not entries:
        st.info("No audit entries")
        return

    df = pd.DataFrame([
        {
            "Time": e.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            "Action": e.action.value,
            "Category": e.category.value,
            "Triggered By": e.triggered_by.value,
            "Outcome": e.outcome.value,
            "Description": e.description,
        }
        for e in entries
    ])
    st.dataframe(df, use_container_width=True, height=400)


def render_emergency(orchestrator, account_id):
    governance = orchestrator.governance
    if governance.is_emergency_active(account_id):
        state = governance.emergency.get_emergency_state(account_id)
        st.error(f"🚨 Emergency stop active: {state.reason} (by {state.triggered_by})")
        if st.button("Resolve emergency stop", key=f"resolve_{account_id}"):
            try:
                orchestrator.resolve_emergency(account_id, resolved_by="console")
                st.success("Emergency stop resolved")
            except GovernanceConflict as e:
                st.error(str(e))
    else:
        reason = st.text_input("Reason", key=f"reason_{account_id}")
        hours = st.number_input("Auto-resume after (hours, 0 = manual)", min_value=0, max_value=168,
                                value=0, key=f"hours_{account_id}")
        if st.button("🛑 Trigger emergency stop", key=f"stop_{account_id}"):
            orchestrator.emergency_stop(
                account_id,
                triggered_by="console",
                reason=reason or "Manual stop from console",
                auto_resume_in_hours=hours or None,
            )
            st.warning("Emergency stop triggered")


def main():
    """Main Streamlit app."""
    initialize_session_state()

    st.title("🤖 Marketing Autopilot")
    st.markdown("**Autonomous optimization control loop with LangGraph**")

    # Sidebar - Configuration
    st.sidebar.header("⚙️ Configuration")

    num_accounts = st.sidebar.slider("Number of Accounts", min_value=1, max_value=20, value=5)
    seed = st.sidebar.number_input("Random Seed (for reproducibility)", min_value=1, max_value=1000, value=42)

    autonomy_level = st.sidebar.selectbox(
        "Autonomy Level",
        list(AutonomyLevel),
        index=1,
        format_func=lambda x: x.value.replace('_', ' ').title(),
        help="Semi and full autonomy are queued for sign-off in the Approvals tab"
    )
    risk_tolerance = st.sidebar.selectbox(
        "Risk Tolerance",
        list(RiskTolerance),
        index=1,
        format_func=lambda x: x.value.title()
    )
    dry_run = st.sidebar.checkbox("Dry run", value=False,
                                  help="Compute the cycle without persisting any change")

    if st.sidebar.button("🆕 New Accounts"):
        st.session_state.orchestrator = build_orchestrator(num_accounts, seed, autonomy_level, risk_tolerance)
        st.session_state.results = []

    if st.sidebar.button("🚀 Run Cycle", type="primary"):
        if st.session_state.orchestrator is None:
            st.session_state.orchestrator = build_orchestrator(
                num_accounts, seed, autonomy_level, risk_tolerance
            )
        st.session_state.results = run_cycles(st.session_state.orchestrator, dry_run)

    orchestrator = st.session_state.orchestrator
    if orchestrator is not None:
        st.sidebar.markdown("---")
        st.sidebar.subheader("🌐 Global Kill Switch")
        enabled = orchestrator.governance.configs.is_global_enabled()
        if st.sidebar.toggle("Autopilot enabled", value=enabled) != enabled:
            orchestrator.governance.configs.set_global_enabled(not enabled, changed_by="console")

    results = st.session_state.results
    if not results:
        st.info("👈 Configure settings in the sidebar and click 'Run Cycle' to start")

        col1, col2 = st.columns(2)
        with col1:
            st.markdown("### 🎯 What This Demonstrates")
            st.markdown("""
            - **Autonomy Tiers**: manual, AI-assisted, semi and full autonomy
            - **Safety Rules**: every change gated by block / approval / warn rules
            - **Signal Monitoring**: CPA spikes, ROI collapse, tracking failures
            - **Emergency Stop**: critical deviations halt the account
            - **Audit Trail**: every decision logged and revertible
            """)
        with col2:
            st.markdown("### 🏗️ Architecture")
            st.markdown("""
            ```
            Load State → Readiness Check
                    ↓
            Signal Scan → (Emergency Stop)
                    ↓
            Hypotheses → Experiments → Optimizations
                    ↓
            Rule Engine Gate (LangGraph)
                    ↓
            Apply / Request Approval / Block
            ```
            """)
        return

    # Summary metrics
    st.markdown("### 📊 Summary Metrics")
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Accounts", len(results))
    col2.metric("Changes Applied", sum(r.updates_applied for r in results))
    col3.metric("Approvals Requested", sum(r.approvals_requested for r in results))
    col4.metric("Critical Alerts", sum(r.alerts_triggered for r in results))

    st.markdown("---")
    col1, col2 = st.columns(2)
    with col1:
        st.plotly_chart(create_status_chart(results), use_container_width=True)
    with col2:
        st.plotly_chart(create_health_chart(results), use_container_width=True)

    st.markdown("---")
    st.plotly_chart(create_activity_chart(results), use_container_width=True)

    # Cycle table
    st.markdown("---")
    st.markdown("### 📋 Cycle Results")
    df = pd.DataFrame([
        {
            "Account": r.account_id,
            "Cycle": r.cycle_number,
            "Status": r.status.value.upper(),
            "Autonomy": r.autonomy_level.value,
            "Health": f"{r.context_health_score:.1f}",
            "Readiness": f"{r.readiness_score:.0f}",
            "Signals": r.signals_detected,
            "Summary": r.summary,
        }
        for r in results
    ])

    def highlight_status(row):
        if row["Status"] == "FAILED":
            return ['background-color: #f8d7da'] * len(row)
        elif row["Status"] == "SKIPPED":
            return ['background-color: #fff3cd'] * len(row)
        return ['background-color: #d4edda'] * len(row)

    st.dataframe(df.style.apply(highlight_status, axis=1), use_container_width=True)

    # Account drill-down
    st.markdown("---")
    st.markdown("### 🔍 Account Detail")
    selected = st.selectbox("Select Account", [r.account_id for r in results])
    result = next(r for r in results if r.account_id == selected)

    col1, col2 = st.columns(2)
    with col1:
        st.markdown(f"**Summary:** {result.summary}")
        for highlight in result.highlights:
            st.markdown(f"- ✨ {highlight}")
        for concern in result.concerns:
            st.markdown(f"- ⚠️ {concern}")
    with col2:
        st.markdown("**Next Actions:**")
        for action in result.next_actions:
            st.markdown(f"- {action}")
        if result.error_message:
            st.error(result.error_message)

    tab1, tab2, tab3, tab4 = st.tabs(["Approvals", "Changes", "Audit Log", "Emergency"])
    with tab1:
        render_approvals(orchestrator, selected)
    with tab2:
        render_changes(orchestrator, selected)
    with tab3:
        render_audit_log(orchestrator, selected)
    with tab4:
        render_emergency(orchestrator, selected)


if __name__ == "__main__":
    main()
