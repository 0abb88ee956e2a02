import streamlit as st
import requests
import os

# --- Page Configuration ---
st.set_page_config(
    page_title="BetMaestro Assistant",
    page_icon="🏀",
    layout="wide"
)

# --- Backend API Configuration ---
API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")


def call_api(method: str, path: str, **kwargs):
    """Calls the backend and shows an error instead of raising."""
    try:
        response = requests.request(method, f"{API_BASE_URL}{path}", timeout=60, **kwargs)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.RequestException as e:
        st.error(f"Error connecting to the backend: {e}")
        return None


def send(user_input):
    chat = call_api("post", "/chat", json={"session_id": st.session_state.session_id, "user_input": user_input})
    if chat:
        st.session_state.chat = chat
        if chat.get("navigate_to") == "profile":
            st.session_state.show_profile = True


def render_strategy(strategy: dict):
    st.markdown(strategy["description"])
    for bet in strategy["suggested_bets"]:
        st.markdown(
            f"- **{bet['bet_amount']:.2f}€** on **{bet['predicted_winner']}** with {bet['house']} "
            f"({bet['home_team']} vs {bet['away_team']}, {bet['game_date']}) at odds **{bet['odds']}**  \n"
            f"  _{bet['justification']}_"
        )
    st.caption(strategy["risk_assessment"])


def render_sidebar():
    session_id = st.session_state.session_id
    profile = st.session_state.profile
    wallet = call_api("get", f"/wallet/{session_id}")
    with st.sidebar:
        st.subheader(profile["user"]["name"])
        st.write(f"Plan: **{profile['user']['plan']}**")
        if wallet:
            st.metric("Balance", f"{wallet['balance']:.2f}€")
        if st.button("Recharge 100€"):
            call_api("post", "/wallet/recharge", json={"session_id": session_id})
            st.rerun()
        if st.session_state.get("show_profile") or profile["user"]["plan"] != "premium":
            if st.button("Upgrade to Premium"):
                updated = call_api("post", "/profile/plan", json={"session_id": session_id, "plan": "premium"})
                if updated:
                    st.session_state.profile = updated
                    st.session_state.show_profile = False
                st.rerun()
        with st.expander("My bets"):
            for bet in call_api("get", f"/bets/{session_id}") or []:
                st.write(f"{bet['game_date']} {bet['home_team']} vs {bet['away_team']}: "
                         f"{bet['bet_amount']:.2f}€ on {bet['predicted_winner']} ({bet['result']})")
            if st.button("Summarize my bets"):
                summary = call_api("get", f"/bets/{session_id}/summary")
                if summary:
                    st.info(summary["summary"])
        if st.button("Log out"):
            call_api("post", "/logout", json={"session_id": session_id})
            for key in ("profile", "chat", "show_profile"):
                st.session_state.pop(key, None)
            st.rerun()


def main():
    """Main function to run the Streamlit app."""
    st.title("BetMaestro Assistant 🏀")

    # --- Initialization and State Management ---
    if "session_id" not in st.session_state:
        # Generate a unique session ID for the user
        st.session_state.session_id = os.urandom(24).hex()

    if "profile" not in st.session_state:
        col_login, col_preview = st.columns(2)
        if col_login.button("Log in"):
            st.session_state.profile = call_api("post", "/login", json={"session_id": st.session_state.session_id})
            st.rerun()
        if col_preview.button("Preview with demo data"):
            st.session_state.profile = call_api(
                "post", "/login", json={"session_id": st.session_state.session_id, "preview": True}
            )
            st.rerun()
        return

    render_sidebar()

    if "chat" not in st.session_state:
        with st.spinner("Thinking..."):
            st.session_state.chat = call_api("post", "/chat/start", json={"session_id": st.session_state.session_id})
    chat = st.session_state.chat
    if not chat:
        return

    # --- Main Chat Interface ---
    messages = chat["messages"]
    for index, message in enumerate(messages):
        with st.chat_message("assistant" if message["sender"] == "ai" else "user"):
            if message.get("text"):
                st.markdown(message["text"])
            if message.get("strategy"):
                render_strategy(message["strategy"])
            # Only the latest message's quick replies are clickable
            if message.get("options") and index == len(messages) - 1:
                columns = st.columns(len(message["options"]))
                for column, option in zip(columns, message["options"]):
                    if column.button(option["label"], key=f"{message['id']}-{option['value']}",
                                     disabled=not chat["input_enabled"]):
                        with st.spinner("Thinking..."):
                            send(option)
                        st.rerun()

    # Chat input
    if user_input := st.chat_input(chat["input_hint"], disabled=not chat["input_enabled"]):
        with st.spinner("Thinking..."):
            send(user_input)
        st.rerun()


if __name__ == "__main__":
    main()
