from xrestsync import APIObject


def test_basic_example(server, make_client):
    client = make_client(write_returns_object=True)

    obj = APIObject(client, path="/api/objects", data='{"id": "1234", "name": "potato"}')
    obj.read()
    # Not there yet, so the read cleared the id.
    assert obj.id == ""

    obj.id = "1234"
    obj.create()
    assert obj.id == "1234"
    assert server.objects["1234"] == {"id": "1234", "name": "potato"}

    server.objects["1234"]["name"] = "tomato"
    obj.read()
    modified, has_changes = obj.compute_delta()
    assert has_changes
    assert modified == {"id": "1234", "name": "tomato"}

    obj.update()
    assert server.objects["1234"]["name"] == "potato"
    assert obj.compute_delta() == ({"id": "1234", "name": "potato"}, False)

    obj.delete()
    assert "1234" not in server.objects
