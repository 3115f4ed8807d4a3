"""Message templates for the bot (HTML parse mode; user content is escaped here)."""
from html import escape
from typing import Optional

from bot.utils.datetime_utils import format_remaining
from bot.utils.email import mask_email
from bot.utils.permissions import Role, parse_role, role_display_name


def welcome_message(first_name: Optional[str] = None, linked: bool = False) -> str:
    """Welcome message for /start command."""
    greeting = f"👋 Welcome, {escape(first_name)}!" if first_name else "👋 Welcome!"
    if linked:
        next_step = "✅ Your account is linked. Try /communities to find a group to join."
    else:
        next_step = "🔗 Start with /link to connect your Telegram account to your email."

    return f"""{greeting}

I help you join and create <b>communities</b>.

{next_step}

Use /help to see everything I can do."""


def help_message(role: Optional[str] = None, linked: bool = False) -> str:
    """Help text; admin sections only show for admins."""
    text = """📚 <b>Commands</b>

<b>Account</b>
/link - Link your email with a magic link
/link_status - Check your link status
/cancel - Cancel the current flow

<b>Communities</b>
/communities - Browse communities
/join &lt;slug&gt; - Join a community
/leave &lt;slug&gt; - Leave a community
/my_communities - Communities you belong to
/create_community - Create a new community"""

    if linked and parse_role(role) == Role.SITE_ADMIN:
        text += """

<b>Admin</b>
/admin_panel - System overview"""

    if not linked:
        text += "\n\n💡 Most commands need a linked account. Start with /link."
    return text


def unknown_input_message() -> str:
    return "🤔 I didn't understand that. Use /help to see the available commands."


def generic_error_message() -> str:
    return "❌ Something went wrong. Please try again in a moment."


def rate_limited_message(retry_after_seconds: int) -> str:
    return f"⏳ You're sending messages too quickly. Please wait {format_remaining(retry_after_seconds)} and try again."


# --- linking -----------------------------------------------------------------

def already_linked_message(email: Optional[str], role: Optional[str]) -> str:
    return f"""✅ <b>Your account is already linked!</b>

📧 Email: {escape(mask_email(email))}
👤 Role: {role_display_name(role)}

Use /link_status to see your full link status."""


def link_prompt_message(first_name: Optional[str] = None) -> str:
    name = escape(first_name) if first_name else "there"
    return f"""🔗 <b>Link Your Account</b>

Hi {name}! Let's connect your Telegram account with your email address.

📧 <b>Please send me your email address:</b>
• Make sure it's spelled correctly
• You'll receive a magic link to verify
• The link expires in 24 hours

Type your email address now, or send /cancel to stop."""


def invalid_email_message(error: str) -> str:
    return f"""❌ <b>Invalid Email Address</b>

{escape(error)}

Please send a valid email address, or send /cancel to stop."""


def email_expected_message() -> str:
    return """📧 Please send me your email address as a text message.

Example: user@example.com

Or send /cancel to stop the linking process."""


def magic_link_limited_message(retry_after_seconds: int) -> str:
    return f"""⏳ <b>Too many magic link requests</b>

You can request another link for this email in {format_remaining(retry_after_seconds)}.
Use /link to start again later."""


def try_later_message() -> str:
    return "⚠️ This action is temporarily unavailable. Please try again later."


def sending_link_message(email: str) -> str:
    return f"""📤 <b>Sending Magic Link...</b>

📧 Email: {escape(mask_email(email))}
⏳ Please wait..."""


def magic_link_sent_message(email: str, limit_per_hour: int = 3) -> str:
    return f"""✅ <b>Magic Link Sent!</b>

📧 Check your email: {escape(mask_email(email))}

📋 <b>Next Steps:</b>
1. Check your email inbox (and spam folder)
2. Click the magic link in the email
3. You'll be redirected to complete linking
4. Return here for confirmation

⏰ Link expires in 24 hours
🔄 Use /link_status to check progress

💡 <b>Tip:</b> Magic links are limited to {limit_per_hour} per hour per email address."""


def magic_link_failed_message() -> str:
    return """❌ <b>Failed to Send Magic Link</b>

Something went wrong while sending the email.
Please try again in a few minutes with /link."""


def link_cancelled_message() -> str:
    return """❌ <b>Linking Cancelled</b>

No worries! You can start the linking process again anytime with /link."""


def nothing_to_cancel_message() -> str:
    return "ℹ️ There's nothing to cancel."


def link_status_linked_message(email: Optional[str], role: Optional[str], username: Optional[str] = None) -> str:
    text = f"""✅ <b>Account Successfully Linked</b>

🔗 <b>Link Status:</b> Linked
📧 <b>Email:</b> {escape(mask_email(email))}
👤 <b>Role:</b> {role_display_name(role)}"""
    if username:
        text += f"\n🏷️ <b>Username:</b> @{escape(username)}"
    if parse_role(role) == Role.SITE_ADMIN:
        text += "\n\n🔱 Use /admin_panel for admin tools."
    return text


def link_status_pending_message(email: str, remaining_seconds: int) -> str:
    return f"""🔄 <b>Linking in Progress</b>

📧 Email: {escape(mask_email(email))}
⏰ Expires in: {format_remaining(remaining_seconds)}

📋 <b>Next:</b> Check your email and click the magic link!"""


def link_status_awaiting_email_message() -> str:
    return """🔄 <b>Linking in Progress</b>

📋 <b>Next:</b> Send your email address to continue linking."""


def link_status_expired_message(email: str) -> str:
    return f"""⌛ <b>Magic Link Expired</b>

📧 Email: {escape(mask_email(email))}

Your linking session has expired. Use /link to start over."""


def link_status_not_linked_message() -> str:
    return """❌ <b>Account Not Linked</b>

📋 <b>Next Steps:</b>
1. Use /link to start the linking process
2. Enter your email address
3. Check your email for the magic link
4. Click the link to complete setup"""


def link_completed_message(email: str) -> str:
    return f"""🎉 <b>Account Linked!</b>

Your Telegram account is now linked to {escape(mask_email(email))}.
Use /help to see what you can do next."""


# --- community wizard ---------------------------------------------------------

def wizard_step_message(step: int) -> str:
    prompts = {
        1: """🏗️ <b>Create a Community</b> (step 1/5)

Send a <b>slug</b> for your community URL.
• 3-50 characters
• lowercase letters, numbers, <code>-</code> and <code>_</code>

Example: <code>crypto-trading</code>

Send /cancel at any time to stop.""",
        2: """📝 <b>Step 2/5: Name</b>

Send the display name for your community (3-100 characters).""",
        3: """📄 <b>Step 3/5: Description</b>

Send a short description (up to 500 characters), or send <code>skip</code>.""",
        4: """🔒 <b>Step 4/5: Visibility</b>

Send <code>public</code> (anyone can join) or <code>private</code> (join requests need approval).""",
    }
    return prompts[step]


def wizard_confirm_message(slug: str, name: str, description: Optional[str], is_private: bool) -> str:
    visibility = "🔒 Private" if is_private else "🌍 Public"
    return f"""✅ <b>Step 5/5: Confirm</b>

<b>Slug:</b> <code>{escape(slug)}</code>
<b>Name:</b> {escape(name)}
<b>Description:</b> {escape(description) if description else "<i>none</i>"}
<b>Visibility:</b> {visibility}

Send <code>create</code> to create it, <code>back</code> to change visibility, or <code>cancel</code>."""


def wizard_confirm_reprompt_message() -> str:
    return 'Please send "create", "back", or "cancel".'


def wizard_cancelled_message() -> str:
    return "❌ Community creation cancelled. Start again anytime with /create_community."


def wizard_error_message(error: str) -> str:
    return f"❌ {escape(error)}"


def community_created_message(name: str, slug: str, is_private: bool) -> str:
    visibility = "🔒 Private" if is_private else "🌍 Public"
    return f"""🎉 <b>Community Created!</b>

<b>{escape(name)}</b> (<code>{escape(slug)}</code>)
{visibility} · 👥 1 member

You are the admin of this community."""


def community_create_failed_message(error: Optional[str] = None) -> str:
    detail = escape(error) if error else "Something went wrong while creating the community."
    return f"""❌ <b>Community Not Created</b>

{detail}

Run /create_community to start over."""


# --- communities --------------------------------------------------------------

SORT_LABELS = {
    "newest": "🆕 Newest",
    "popular": "🔥 Popular",
    "alphabetical": "🔤 A-Z",
}


def community_line(community) -> str:
    lock = "🔒 " if community.is_private else ""
    return f"{lock}<b>{escape(community.name)}</b> · <code>{escape(community.slug)}</code> · 👥 {community.member_count}"


def community_list_message(communities, page: int, sort: str, search: Optional[str] = None) -> str:
    header = f"🏘️ <b>Communities</b> · {SORT_LABELS.get(sort, sort)} · page {page + 1}"
    if search:
        header += f"\n🔎 Search: <i>{escape(search)}</i>"
    if not communities:
        return header + "\n\nNo communities found."
    lines = [community_line(c) for c in communities]
    return header + "\n\n" + "\n".join(lines) + "\n\nJoin with /join &lt;slug&gt;"


def my_communities_message(rows) -> str:
    if not rows:
        return "You haven't joined any communities yet. Browse with /communities."
    lines = [f"{community_line(community)} · {membership.role}" for community, membership in rows]
    return "👥 <b>Your Communities</b>\n\n" + "\n".join(lines)


def joined_message(name: str) -> str:
    return f"🎉 You joined <b>{escape(name)}</b>!"


def join_pending_message(name: str) -> str:
    return f"📨 Your request to join <b>{escape(name)}</b> is pending approval."


def left_message(name: str) -> str:
    return f"👋 You left <b>{escape(name)}</b>."


def slug_argument_missing_message(command: str) -> str:
    return f"Usage: /{command} &lt;slug&gt;"


def admin_panel_message(stats: dict) -> str:
    lines = "\n".join(f"• {escape(str(k))}: {escape(str(v))}" for k, v in stats.items())
    return f"🔱 <b>Admin Panel</b>\n\n{lines}"
