import manage_roles


async def _run(database, *argv):
    args = manage_roles.build_parser().parse_args(list(argv))
    return await manage_roles.run(args, database)


async def test_set_role(database, identities, make_linked):
    user, _ = await make_linked(1, "alice@acme.org")

    assert await _run(database, "set", user.id, "siteAdmin") == 0

    assert (await identities.get_by_id(user.id)).role == "siteAdmin"
    events = await identities.audit_events(user_id=user.id)
    assert events[0].event == "role_change"


async def test_set_rejects_unknown_role(database, identities, make_linked, capsys):
    user, _ = await make_linked(1, "alice@acme.org")

    assert await _run(database, "set", user.id, "superuser") == 2

    assert "Unknown role" in capsys.readouterr().out
    assert (await identities.get_by_id(user.id)).role == "user"


async def test_list_find_and_audit(database, make_linked, capsys):
    await make_linked(1, "alice@acme.org", role="communityAdmin")
    await make_linked(2, "bob@acme.org")

    assert await _run(database, "list", "communityAdmin") == 0
    listed = capsys.readouterr().out
    assert "tg=1" in listed
    assert "tg=2" not in listed

    assert await _run(database, "find", "2") == 0
    assert "b**@a***" in capsys.readouterr().out
    assert await _run(database, "find", "99") == 1

    assert await _run(database, "audit", "5") == 0
    audit = capsys.readouterr().out
    assert "role_change" in audit
    assert "alice@acme.org" not in audit
