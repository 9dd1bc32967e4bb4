"""
zkdap command line: compile, setup ceremony, prove, verify.

Artifacts live in the build directory (``ZKDAP_BUILD_DIR``, default ./build)
with the file names the snarkjs scripts used: proof.json, public.json,
verification_key.json.
"""

import secrets
import sys
import time
from pathlib import Path

import click

from zkdap import __version__
from zkdap.circuits import ceremony
from zkdap.circuits.constraint_system import ConstraintSystem, THRESHOLD_CIRCUIT, threshold_circuit
from zkdap.circuits.models import Proof, ProvingKey, PublicSignals, VerificationKey
from zkdap.circuits.prover import prove
from zkdap.circuits.verifier import check
from zkdap.circuits.witness import generate
from zkdap.core.config import settings
from zkdap.core.errors import ZKDAPError
from zkdap.gateway import AccessGateway
from zkdap.cli.utils import (
    create_progress_spinner, file_summary, format_duration, print_error,
    print_info, print_json, print_success, print_table, read_json,
    setup_logging, write_json,
)

DEMO_RESOURCE_ID = 67890
DEMO_REQUIRED_PERMISSION = 5
DEMO_PAYLOAD = "secret"


def _path(ctx: click.Context, name: str) -> Path:
    return ctx.obj["build_dir"] / name


def _load_circuit(ctx: click.Context) -> ConstraintSystem:
    return ConstraintSystem.from_dict(read_json(_path(ctx, f"{THRESHOLD_CIRCUIT}.json")))


def _transcript_path(ctx: click.Context) -> Path:
    return _path(ctx, f"{THRESHOLD_CIRCUIT}_transcript.json")


def _fail(message: str):
    print_error(message)
    sys.exit(1)


@click.group()
@click.option('--debug', is_flag=True, help='Debug logging')
@click.option('--build-dir', type=click.Path(file_okay=False), default=None,
              help='Artifact directory (default: ZKDAP_BUILD_DIR)')
@click.pass_context
def cli(ctx, debug, build_dir):
    """zkdap - zero-knowledge data access proofs"""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug
    ctx.obj['build_dir'] = Path(build_dir or settings.build_dir)
    setup_logging("DEBUG" if debug else settings.log_level)


@cli.command()
def version():
    """Show the zkdap version"""
    click.echo(f"zkdap v{__version__}")


@cli.command()
@click.option('--bit-width', type=click.IntRange(1, 64), default=None,
              help='Bit width of compared permissions (default: ZKDAP_BIT_WIDTH)')
@click.pass_context
def compile(ctx, bit_width):
    """Build the threshold circuit and write its constraint system"""
    try:
        cs = threshold_circuit(bit_width)
    except ZKDAPError as e:
        _fail(f"Compilation failed: {e}")
    path = write_json(_path(ctx, f"{THRESHOLD_CIRCUIT}.json"), cs.to_dict())
    print_table(
        f"Circuit {cs.name}",
        ["Property", "Value"],
        [
            ["bit width", cs.bit_width],
            ["signals", cs.n_signals],
            ["constraints", cs.n_constraints],
            ["domain size", cs.domain_size],
            ["public", ", ".join(cs.public_names)],
            ["private", ", ".join(cs.private_names)],
            ["digest", cs.digest],
        ],
    )
    print_success(f"Constraint system written to {file_summary(path)}")


@cli.group()
def setup():
    """Multi-party setup ceremony"""


@setup.command("init")
@click.option('--power', type=int, default=None, help='Ceremony power k (2^k gates)')
@click.pass_context
def setup_init(ctx, power):
    """Start a ceremony from public entropy"""
    try:
        transcript = ceremony.initialize(_load_circuit(ctx), power)
    except (ZKDAPError, OSError) as e:
        _fail(f"Initialization failed: {e}")
    path = ceremony.save_transcript(transcript, _transcript_path(ctx))
    print_success(f"Ceremony initialized (power {transcript.power}): {file_summary(path)}")


@setup.command("contribute")
@click.option('--name', default="", help='Contributor label recorded in the transcript')
@click.option('--entropy', default=None, help='Contribution entropy (prompted if omitted)')
@click.pass_context
def setup_contribute(ctx, name, entropy):
    """Add a secret contribution to the current phase"""
    if entropy is None:
        configured = settings.get_contribution_entropy()
        entropy = configured if configured is not None else click.prompt(
            "Enter random text", hide_input=True
        )
    randomness = bytearray(entropy.encode("utf-8") if isinstance(entropy, str) else entropy)
    del entropy
    try:
        transcript = ceremony.load_transcript(_transcript_path(ctx))
        with create_progress_spinner() as progress:
            progress.add_task(description=f"Contributing to phase {transcript.phase}...", total=None)
            transcript = ceremony.contribute(transcript, randomness, name)
    except (ZKDAPError, OSError) as e:
        _fail(f"Contribution failed: {e}")
    ceremony.save_transcript(transcript, _transcript_path(ctx))
    print_success(f"Contribution #{transcript.head.index} recorded: {transcript.head_hash}")


@setup.command("seal")
@click.pass_context
def setup_seal(ctx):
    """Close phase 1 and prepare circuit-specific parameters"""
    try:
        cs = _load_circuit(ctx)
        transcript = ceremony.load_transcript(_transcript_path(ctx))
        with create_progress_spinner() as progress:
            progress.add_task(description="Preparing phase 2...", total=None)
            transcript = ceremony.seal_phase1(transcript, cs)
    except (ZKDAPError, OSError) as e:
        _fail(f"Seal failed: {e}")
    ceremony.save_transcript(transcript, _transcript_path(ctx))
    print_success(f"Phase 1 sealed: {transcript.head_hash}")


@setup.command("finalize")
@click.pass_context
def setup_finalize(ctx):
    """Derive the proving and verification keys"""
    try:
        cs = _load_circuit(ctx)
        transcript = ceremony.load_transcript(_transcript_path(ctx))
        proving_key, verification_key = ceremony.finalize(transcript, cs)
    except (ZKDAPError, OSError) as e:
        _fail(f"Finalize failed: {e}")
    pk_path = write_json(_path(ctx, "proving_key.json"), proving_key.model_dump())
    vk_path = write_json(_path(ctx, "verification_key.json"), verification_key.model_dump())
    print_success(f"Proving key: {file_summary(pk_path)}")
    print_success(f"Verification key: {file_summary(vk_path)}")


@setup.command("verify")
@click.option('--deep', is_flag=True, help='Recompute public steps and run pairing checks')
@click.pass_context
def setup_verify(ctx, deep):
    """Audit the ceremony transcript"""
    start = time.time()
    try:
        cs = _load_circuit(ctx)
        transcript = ceremony.load_transcript(_transcript_path(ctx))
        ceremony.verify_transcript(transcript, cs, deep=deep)
    except (ZKDAPError, OSError) as e:
        _fail(f"Transcript rejected: {e}")
    print_table(
        "Transcript",
        ["#", "Phase", "Kind", "Contributor", "Hash"],
        [[r.index, r.phase, r.kind, r.contributor or "-", r.record_hash[:16]] for r in transcript.records],
    )
    print_success(f"Transcript valid ({'deep' if deep else 'chain'} audit, {format_duration(time.time() - start)})")


@cli.command("prove")
@click.option('--input', 'input_file', type=click.Path(exists=True, dir_okay=False),
              help='input.json with userPermission, requiredPermission, resourceId')
@click.option('--user-permission', type=int, default=None)
@click.option('--required-permission', type=int, default=None)
@click.option('--resource-id', type=int, default=None)
@click.pass_context
def prove_command(ctx, input_file, user_permission, required_permission, resource_id):
    """Generate a proof and its public signals"""
    values = read_json(input_file) if input_file else {}
    for name, value in (("userPermission", user_permission),
                        ("requiredPermission", required_permission),
                        ("resourceId", resource_id)):
        if value is not None:
            values[name] = value
    if "userPermission" not in values:
        values["userPermission"] = click.prompt("userPermission", hide_input=True, type=int)

    start = time.time()
    try:
        proving_key = ProvingKey.model_validate(read_json(_path(ctx, "proving_key.json")))
        cs = proving_key.constraint_system()
        witness = generate(
            cs,
            {"userPermission": values.pop("userPermission")},
            values,
        )
        proof, public_signals = prove(witness, proving_key)
        del witness
    except (ZKDAPError, OSError) as e:
        _fail(f"Proof generation failed: {e}")
    proof_path = write_json(_path(ctx, "proof.json"), proof.model_dump())
    public_path = write_json(_path(ctx, "public.json"), public_signals.signals)
    print_success(f"Proof: {file_summary(proof_path)} ({format_duration(time.time() - start)})")
    print_info(f"Public signals {dict(zip(cs.public_names, public_signals.signals))}: {public_path}")


@cli.command("verify")
@click.option('--proof', 'proof_file', type=click.Path(dir_okay=False), default=None)
@click.option('--public', 'public_file', type=click.Path(dir_okay=False), default=None)
@click.option('--vk', 'vk_file', type=click.Path(dir_okay=False), default=None)
@click.pass_context
def verify_command(ctx, proof_file, public_file, vk_file):
    """Verify a proof against the verification key"""
    try:
        verification_key = VerificationKey.model_validate(
            read_json(vk_file or _path(ctx, "verification_key.json"))
        )
        proof = read_json(proof_file or _path(ctx, "proof.json"))
        public = read_json(public_file or _path(ctx, "public.json"))
    except (OSError, ValueError) as e:
        _fail(f"Cannot read artifacts: {e}")
    result = check(proof, public, verification_key)
    if not result.valid:
        _fail(f"Invalid proof: {result.error}")
    print_success(f"OK! Proof verified in {format_duration(result.verification_time_ms / 1000)}")


@cli.command()
@click.option('--proof', 'proof_file', type=click.Path(dir_okay=False), default=None)
@click.option('--public', 'public_file', type=click.Path(dir_okay=False), default=None)
@click.pass_context
def calldata(ctx, proof_file, public_file):
    """Print Solidity verifier calldata"""
    try:
        proof = Proof.model_validate(read_json(proof_file or _path(ctx, "proof.json")))
        public = PublicSignals(signals=read_json(public_file or _path(ctx, "public.json")))
        words = proof.to_calldata()
    except (ZKDAPError, OSError, ValueError) as e:
        _fail(f"Cannot export calldata: {e}")

    def hx(v):
        return f'"0x{v:064x}"'

    a = f"[{hx(words[0])},{hx(words[1])}]"
    b = f"[[{hx(words[2])},{hx(words[3])}],[{hx(words[4])},{hx(words[5])}]]"
    c = f"[{hx(words[6])},{hx(words[7])}]"
    signals = "[" + ",".join(hx(v) for v in public.to_int_list()) + "]"
    click.echo(f"{a},{b},{c},{signals}")


@cli.command()
@click.option('--bit-width', type=click.IntRange(1, 64), default=8, show_default=True)
@click.pass_context
def demo(ctx, bit_width):
    """End-to-end scenario: resource 67890, threshold 5, permissions 10 and 3"""
    start = time.time()
    cs = threshold_circuit(bit_width)
    manager = ceremony.SetupManager(cs, ctx.obj["build_dir"])
    with create_progress_spinner() as progress:
        progress.add_task(description="Running setup ceremony...", total=None)
        proving_key, verification_key = manager.run(
            [bytearray(secrets.token_bytes(32))],
            [bytearray(secrets.token_bytes(32))],
        )
    print_info(f"Setup complete in {format_duration(time.time() - start)}")

    gateway = AccessGateway(verification_key)
    gateway.register(DEMO_RESOURCE_ID, DEMO_REQUIRED_PERMISSION, DEMO_PAYLOAD)

    rows = []
    outcomes = []
    for user_permission in (10, 3):
        witness = generate(
            cs,
            {"userPermission": user_permission},
            {"requiredPermission": DEMO_REQUIRED_PERMISSION, "resourceId": DEMO_RESOURCE_ID},
        )
        proof, public_signals = prove(witness, proving_key)
        decision = gateway.request_access(DEMO_RESOURCE_ID, proof, public_signals)
        rows.append([user_permission, witness.access_granted, decision.granted,
                     decision.reason.value, decision.payload])
        outcomes.append(decision.granted)
        del witness

    print_table(
        f"Resource {DEMO_RESOURCE_ID} (requiredPermission={DEMO_REQUIRED_PERMISSION})",
        ["userPermission", "accessGranted", "granted", "reason", "payload"],
        rows,
    )
    if ctx.obj["debug"]:
        print_json({"verification_key": verification_key.fingerprint, "stats": gateway.get_stats()})
    if outcomes != [True, False]:
        _fail("Demo produced unexpected access decisions")
    print_success("Demo finished as expected")


def main():
    """Console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
