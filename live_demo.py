#!/usr/bin/env python
"""
╔══════════════════════════════════════════════════════════════════════════════╗
║                          PASSGATE LIVE DEMO                                   ║
╚══════════════════════════════════════════════════════════════════════════════╝

Walks through the authentication core end to end with a software
authenticator standing in for the browser:
- Email one-time code login (user created on first contact)
- Passkey registration and sign-in
- Phishing origin rejected
- Cloned authenticator detected
- Security audit trail

Run with --auto to skip the pauses.
"""

import logging
import sys

from passgate.api import CeremonyAPI
from passgate.auth import InMemoryTokenStore, OutboxEmailSender
from passgate.config import AuthSettings
from passgate.webauthn import SoftwareAuthenticator


AUTO = "--auto" in sys.argv
ORIGIN = "https://app.example"


def print_header(title):
    """Print a formatted section header"""
    print("\n" + "═" * 70)
    print(f"  {title}")
    print("═" * 70)


def print_step(step_num, description):
    """Print a numbered step"""
    print(f"\n  [{step_num}] {description}")


def pause(message="Press ENTER to continue..."):
    """Pause for presenter to explain"""
    if AUTO:
        return
    print(f"\n  [PAUSE] {message}")
    input()


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    settings = AuthSettings(rp_id="app.example", rp_origin=ORIGIN, rp_name="Passgate Demo")
    outbox = OutboxEmailSender()
    api = CeremonyAPI.from_settings(settings, email_sender=outbox)
    cookies = InMemoryTokenStore()

    print_header("PART 1: EMAIL CODE LOGIN")

    print_step("1.1", "Alice asks for a login code")
    print(f"  {api.check_user({'email': 'alice@example.com'})}")
    print(f"  {api.send_code({'email': 'alice@example.com', 'name': 'Alice'})}")
    code = outbox.last_code_for("alice@example.com")
    print(f"  Code delivered out-of-band: {code}")

    print_step("1.2", "Alice enters the code")
    result = api.verify_code({'email': 'alice@example.com', 'code': code}, cookies)
    user_id = result['user']['id']
    print(f"  [OK] Signed in as user {user_id}")
    print(f"  Cookie options: {cookies.options(settings.session_cookie_name).to_dict()}")

    print_step("1.3", "The same code a second time")
    print(f"  {api.verify_code({'email': 'alice@example.com', 'code': code})}")

    pause()

    print_header("PART 2: PASSKEY REGISTRATION")

    authenticator = SoftwareAuthenticator(origin=ORIGIN)
    options = api.begin_registration({'user_id': user_id})
    print(f"  Challenge: {options['challenge'][:24]}...")
    print(f"  Exclude list: {options['excludeCredentials']}")
    response = authenticator.create(options)
    registered = api.finish_registration({'user_id': user_id, 'credential': response})
    print(f"  [OK] Registered: {registered['credential']}")

    pause()

    print_header("PART 3: PASSKEY SIGN-IN")

    options = api.begin_authentication({'email': 'alice@example.com'})
    assertion = authenticator.get(options)
    signed_in = api.finish_authentication({'user_id': user_id, 'assertion': assertion}, cookies)
    print(f"  [OK] {signed_in['message']}, expires at {signed_in['expires_at']}")
    print(f"  Current session: {api.current_session(cookies)['user']['email']}")

    print_step("3.1", "A phishing page relays the ceremony")
    phishing = authenticator.clone()
    phishing.origin = "https://evil.example"
    options = api.begin_authentication({'user_id': user_id})
    print(f"  [X] {api.finish_authentication({'user_id': user_id, 'assertion': phishing.get(options)})}")

    print_step("3.2", "A cloned authenticator replays an old counter")
    clone = authenticator.clone()
    options = api.begin_authentication({'user_id': user_id})
    api.finish_authentication({'user_id': user_id, 'assertion': authenticator.get(options)})
    options = api.begin_authentication({'user_id': user_id})
    print(f"  [X] {api.finish_authentication({'user_id': user_id, 'assertion': clone.get(options)})}")

    pause()

    print_header("PART 4: AUDIT TRAIL")

    for i, event in enumerate(api.coordinator.event_log.get_all_events(), 1):
        print(f"  {i:2}. {event}")

    print(f"\n  {api.sign_out(cookies)}")
    print(f"  Session after sign-out: {api.current_session(cookies)}")

    print("\n\n" + "═" * 70)
    print("  DEMONSTRATION COMPLETE!")
    print("═" * 70)


if __name__ == "__main__":
    main()
