import json

import pytest
from pydantic import ValidationError

from conftest import JOB_UUID, make_job_data
from condor_launcher.services.job_models import Command, Job, JobRequest, JobState, StopRequest, UpdateMessage


def test_job_decodes_wire_names():
    job = Job.model_validate(make_job_data(request_disk=1024, group="genomics"))

    assert job.invocation_id == JOB_UUID
    assert job.request_disk == "1024"
    assert job.steps[0].component.name == "wc_wrapper.sh"
    assert job.condor_id == ""


def test_null_lists_become_empty():
    job = Job.model_validate(make_job_data(steps=None, user_groups=None))
    assert job.steps == []
    assert job.format_user_groups() == "{}"


@pytest.mark.parametrize("bad", ["", ".", "..", "a/b", "../../etc"])
def test_unsafe_path_segments_rejected(bad):
    with pytest.raises(ValidationError):
        Job.model_validate(make_job_data(uuid=bad))
    with pytest.raises(ValidationError):
        Job.model_validate(make_job_data(submitter=bad))


def test_user_id_for_submission():
    job = Job.model_validate(make_job_data(submitter="bob-jones@iplantcollaborative.org"))
    assert job.user_id_for_submission() == "bob_jones_iplantcollaborative_org"


def test_condor_id_is_assigned_once():
    job = Job.model_validate(make_job_data())
    job.assign_condor_id("12")
    job.assign_condor_id("12")

    with pytest.raises(ValueError):
        job.assign_condor_id("13")
    assert job.condor_id == "12"


@pytest.mark.parametrize("wire,expected", [("launch", "launch"), ("LAUNCH", "launch"), (0, "launch"), (3, "3"), ("stop", "stop")])
def test_command_tags(wire, expected):
    request = JobRequest.model_validate({"Command": wire, "Job": make_job_data()})
    assert request.command == expected
    assert request.is_launch == (expected == Command.LAUNCH.value)


def test_missing_command_means_launch():
    request = JobRequest.model_validate({"Job": make_job_data()})
    assert request.command == Command.LAUNCH.value
    assert request.is_launch


def test_stop_request():
    request = StopRequest.model_validate_json(json.dumps({"InvocationID": "abc", "Reason": "user", "Version": 1}))
    assert request.invocation_id == "abc"
    assert request.username == ""


def test_update_message_json():
    job = Job.model_validate(make_job_data())
    update = UpdateMessage(job=job, state=JobState.SUBMITTED, message="Launched Condor ID 5")

    payload = json.loads(update.to_json())

    assert payload["State"] == "Submitted"
    assert payload["Message"] == "Launched Condor ID 5"
    assert payload["Job"]["uuid"] == JOB_UUID
    assert payload["Sender"]
    assert payload["SentOn"]
