API = "/api/v1"


def _project(client, **overrides):
    payload = {"name": "Rooftop Love", "description": "Two strangers meet on a rooftop", "total_episodes": 3}
    payload.update(overrides)
    resp = client.post(f"{API}/projects", json=payload)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _episode(client, project_id, number=1):
    resp = client.post(f"{API}/projects/{project_id}/episodes", json={"episode_number": number, "title": f"Episode {number}"})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestProjects:
    def test_crud_and_counts(self, client):
        project = _project(client)
        assert project["status"] == "draft"

        client.post(f"{API}/projects/{project['id']}/characters", json={"name": "Lin"})
        client.post(f"{API}/projects/{project['id']}/scenes", json={"name": "Rooftop", "time_of_day": "night"})
        _episode(client, project["id"])

        listed = client.get(f"{API}/projects").json()
        assert listed[0]["character_count"] == 1
        assert listed[0]["scene_count"] == 1
        assert listed[0]["episode_count"] == 1

        resp = client.put(f"{API}/projects/{project['id']}", json={"settings": {"defaultVoiceId": "v-1"}, "status": "in_progress"})
        assert resp.status_code == 200
        assert resp.json()["settings"]["defaultVoiceId"] == "v-1"
        assert resp.json()["status"] == "in_progress"

        assert client.delete(f"{API}/projects/{project['id']}").status_code == 204
        assert client.get(f"{API}/projects/{project['id']}").status_code == 404

    def test_blank_name_rejected(self, client):
        assert client.post(f"{API}/projects", json={"name": ""}).status_code == 422


class TestCharactersAndImages:
    def test_angle_image_upload_replace_and_delete(self, client):
        project = _project(client)
        character = client.post(f"{API}/projects/{project['id']}/characters", json={"name": "Lin", "traits": {"age": "25"}}).json()
        assert character["uploaded_count"] == 0
        assert "front" in character["missing_angles"]
        assert character["traits"]["age"] == "25"

        first = client.post(
            f"{API}/characters/{character['id']}/images",
            data={"angle": "front"},
            files={"file": ("front.png", b"\x89PNG first", "image/png")},
        )
        assert first.status_code == 200, first.text
        body = first.json()
        assert body["uploaded_count"] == 1
        assert body["image"]["angle"] == "front"
        assert "front" not in body["missing_angles"]

        second = client.post(
            f"{API}/characters/{character['id']}/images",
            data={"angle": "front"},
            files={"file": ("front2.png", b"\x89PNG second", "image/png")},
        ).json()
        assert second["uploaded_count"] == 1
        assert second["image"]["file_path"] != body["image"]["file_path"]

        served = client.get(second["image"]["file_path"])
        assert served.status_code == 200
        assert served.content == b"\x89PNG second"

        deleted = client.delete(f"{API}/characters/{character['id']}/images/front")
        assert deleted.status_code == 200
        assert deleted.json()["uploaded_count"] == 0
        assert deleted.json()["deleted_angle"] == "front"
        # Deleting again is a no-op
        assert client.delete(f"{API}/characters/{character['id']}/images/front").status_code == 200

    def test_unknown_angle_rejected(self, client):
        project = _project(client)
        scene = client.post(f"{API}/projects/{project['id']}/scenes", json={"name": "Rooftop"}).json()

        resp = client.post(
            f"{API}/scenes/{scene['id']}/images",
            data={"angle": "diagonal"},
            files={"file": ("x.png", b"data", "image/png")},
        )

        assert resp.status_code == 400


class TestEpisodesAndStoryboards:
    def test_episode_number_unique_per_project(self, client):
        project = _project(client)
        _episode(client, project["id"], 1)

        resp = client.post(f"{API}/projects/{project['id']}/episodes", json={"episode_number": 1})

        assert resp.status_code == 400

    def test_board_number_must_be_positive(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])

        resp = client.post(f"{API}/episodes/{episode['id']}/storyboards", json={"board_number": 0})

        assert resp.status_code == 422

    def test_storyboard_with_shots_cannot_be_deleted(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])
        board = client.post(f"{API}/episodes/{episode['id']}/storyboards", json={"board_number": 1}).json()
        shot = client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 1}).json()

        resp = client.delete(f"{API}/storyboards/{board['id']}")
        assert resp.status_code == 400

        assert client.delete(f"{API}/shots/{shot['id']}").status_code == 204
        assert client.delete(f"{API}/storyboards/{board['id']}").status_code == 204

    def test_episode_detail_groups_shots(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])
        board = client.post(f"{API}/episodes/{episode['id']}/storyboards", json={"board_number": 1, "title": "Opening"}).json()
        client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 2})
        client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 1})
        client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1})

        detail = client.get(f"{API}/episodes/{episode['id']}").json()

        assert [s["shot_number"] for s in detail["storyboards"][0]["shots"]] == [1, 2]
        assert len(detail["ungrouped_shots"]) == 1


class TestShots:
    def test_new_shot_starts_not_started_and_ignores_status(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])

        resp = client.post(
            f"{API}/episodes/{episode['id']}/shots",
            json={"shot_number": 1, "shot_description": "Hello", "status": "done", "video_path": "/fake.mp4"},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "not_started"
        assert resp.json()["video_path"] is None

    def test_shot_number_unique_within_scope(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])
        board = client.post(f"{API}/episodes/{episode['id']}/storyboards", json={"board_number": 1}).json()

        assert client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1}).status_code == 200
        assert client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1}).status_code == 400
        # Same number in a storyboard is a different scope
        assert client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 1}).status_code == 200
        assert client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 1}).status_code == 400

    def test_auto_group_creates_storyboard_on_demand(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])

        resp = client.post(f"{API}/episodes/{episode['id']}/shots?auto_group=true", json={"shot_number": 3})
        assert resp.status_code == 200
        storyboard_id = resp.json()["storyboard_id"]
        assert storyboard_id is not None

        board = client.get(f"{API}/storyboards/{storyboard_id}").json()
        assert board["board_number"] == 3
        assert board["title"] == "Storyboard 3"

        collision = client.post(f"{API}/episodes/{episode['id']}/shots?auto_group=true", json={"shot_number": 3})
        assert collision.status_code == 400
        assert len(client.get(f"{API}/episodes/{episode['id']}/storyboards").json()) == 1

    def test_character_ids_must_be_positive(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])

        resp = client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1, "character_ids": [1, -2]})

        assert resp.status_code == 422

    def test_cast_must_belong_to_project(self, client):
        project = _project(client)
        other = _project(client, name="Other")
        stranger = client.post(f"{API}/projects/{other['id']}/characters", json={"name": "Stranger"}).json()
        episode = _episode(client, project["id"])

        resp = client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1, "character_id": stranger["id"]})

        assert resp.status_code == 400

    def test_update_moves_shot_between_scopes(self, client):
        project = _project(client)
        episode = _episode(client, project["id"])
        board = client.post(f"{API}/episodes/{episode['id']}/storyboards", json={"board_number": 1}).json()
        grouped = client.post(f"{API}/storyboards/{board['id']}/shots", json={"shot_number": 1}).json()
        client.post(f"{API}/episodes/{episode['id']}/shots", json={"shot_number": 1})

        clash = client.put(f"{API}/shots/{grouped['id']}", json={"storyboard_id": None})
        assert clash.status_code == 400

        moved = client.put(f"{API}/shots/{grouped['id']}", json={"storyboard_id": None, "shot_number": 2})
        assert moved.status_code == 200
        assert moved.json()["storyboard_id"] is None
        assert moved.json()["shot_number"] == 2

    def test_missing_shot_is_404(self, client):
        assert client.get(f"{API}/shots/999").status_code == 404
        assert client.put(f"{API}/shots/999", json={"shot_description": "x"}).status_code == 404
