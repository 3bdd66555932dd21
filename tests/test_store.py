"""
Unit tests for the asset store.

Tests follow the Given/When/Then pattern for clarity.
"""

import logging

import responses

from nft_tracking.lib.store import AssetStore

from conftest import CONTRACT_A, CONTRACT_B


class TestAddCollectibles:
    """Tests for AssetStore.add_collectibles."""

    def test_stores_normalized_items_in_active_scope(self, asset_store, make_details, sample_wallet_address):
        """
        Given two complete items of one contract
        When adding them to the active scope
        Then both collectibles and one contract should be stored and projected
        """
        # Given
        items = [make_details(token_id="1"), make_details(token_id="2")]

        # When
        stored = asset_store.add_collectibles(items)

        # Then
        assert [x.collectible_index for x in stored] == [f"{CONTRACT_A}_1", f"{CONTRACT_A}_2"]
        assert asset_store.collectibles == stored
        assert len(asset_store.collectible_contracts) == 1
        contract = asset_store.collectible_contracts[0]
        assert contract.address.lower() == CONTRACT_A
        assert contract.name == "Items"
        state = asset_store.state
        assert state.all_collectibles[sample_wallet_address.lower()]["mainnet"] == stored

    def test_prunes_collectibles_but_retains_contracts(self, asset_store, make_details):
        """
        Given a stored collectible of contract A
        When a later result holds only a collectible of contract B
        Then A's collectible should be pruned and A's contract retained
        """
        # Given
        asset_store.add_collectibles([make_details(contract=CONTRACT_A)])

        # When
        asset_store.add_collectibles([make_details(contract=CONTRACT_B, contract_name="Bees", contract_symbol="BEE")])

        # Then
        assert [x.address.lower() for x in asset_store.collectibles] == [CONTRACT_B]
        assert sorted(x.address.lower() for x in asset_store.collectible_contracts) == [CONTRACT_A, CONTRACT_B]

    def test_adding_same_result_twice_is_idempotent(self, asset_store, make_details):
        """
        Given a stored result
        When the same result is added again
        Then the stored collectibles should not change
        """
        # Given
        items = [make_details(token_id="1"), make_details(contract=CONTRACT_B, token_id="4")]
        first = asset_store.add_collectibles(items)

        # When
        second = asset_store.add_collectibles(items)

        # Then
        assert second == first

    @responses.activate
    def test_drops_items_that_are_not_retainable(self, asset_store, make_details):
        """
        Given items with zero balance, with no name and with an unknown ERC1155 balance
        When adding them
        Then only the unknown-balance item should be kept
        """
        # Given
        items = [
            make_details(token_id="1", standard="erc1155", token_balance=0),
            make_details(token_id="2", name=None),
            make_details(token_id="3", standard="erc1155", token_balance=None),
        ]
        asset_store.normalizer.chain.balances[(CONTRACT_A, "3")] = ValueError("no balance")

        # When
        stored = asset_store.add_collectibles(items, detect_from_api=False)

        # Then
        assert [x.token_id for x in stored] == ["3"]
        assert stored[0].token_balance is None

    def test_failing_item_does_not_affect_others(self, asset_store, make_details, monkeypatch):
        """
        Given a normalizer that raises for one item
        When adding two items
        Then the other item should still be stored
        """
        # Given
        original = asset_store.normalizer.normalize_collectible

        def flaky(details, *args):
            if details.token_id == "1":
                raise RuntimeError("boom")
            return original(details, *args)

        monkeypatch.setattr(asset_store.normalizer, "normalize_collectible", flaky)

        # When
        stored = asset_store.add_collectibles([make_details(token_id="1"), make_details(token_id="2")])

        # Then
        assert [x.token_id for x in stored] == ["2"]

    def test_normalizes_each_contract_once(self, asset_store, make_details, monkeypatch):
        """
        Given three items of one contract, one of them duplicated
        When adding them
        Then the contract should be normalized once and each index once
        """
        # Given
        contract_calls = []
        collectible_calls = []
        normalize_contract = asset_store.normalizer.normalize_contract
        normalize_collectible = asset_store.normalizer.normalize_collectible

        def count_contract(details, *args):
            contract_calls.append(details.contract_address)
            return normalize_contract(details, *args)

        def count_collectible(details, *args):
            collectible_calls.append(details.collectible_index)
            return normalize_collectible(details, *args)

        monkeypatch.setattr(asset_store.normalizer, "normalize_contract", count_contract)
        monkeypatch.setattr(asset_store.normalizer, "normalize_collectible", count_collectible)
        items = [make_details(token_id="1"), make_details(token_id="2"), make_details(token_id="1")]

        # When
        asset_store.add_collectibles(items)

        # Then
        assert contract_calls == [CONTRACT_A]
        assert sorted(collectible_calls) == [f"{CONTRACT_A}_1", f"{CONTRACT_A}_2"]

    def test_explicit_scope_leaves_active_projection(self, asset_store, make_details, other_wallet_address):
        """
        Given a store whose active scope is another address
        When adding collectibles for an explicit scope
        Then they should be stored for that scope only
        """
        # When
        stored = asset_store.add_collectibles([make_details()], scope=(other_wallet_address, "matic"))

        # Then
        assert len(stored) == 1
        assert asset_store.collectibles == []
        assert asset_store.state.all_collectibles[other_wallet_address.lower()]["matic"] == stored

    def test_no_owner_stores_nothing(self, network_context, normalizer, make_details):
        """
        Given a store without a selected address
        When adding collectibles without a scope
        Then nothing should be stored
        """
        # Given
        store = AssetStore(network_context, normalizer)

        # When
        stored = store.add_collectibles([make_details()])

        # Then
        assert stored == []
        assert store.state.all_collectibles == {}
        store.close()


class TestActiveScope:
    """Tests for the active-scope projection."""

    def test_switching_address_projects_its_scope(self, asset_store, make_details, sample_wallet_address, other_wallet_address):
        """
        Given collectibles stored for two addresses
        When switching the selected address back and forth
        Then the projection should follow without modifying the stored maps
        """
        # Given
        asset_store.add_collectibles([make_details(token_id="1")])
        asset_store.add_collectibles([make_details(token_id="9")], scope=(other_wallet_address, "mainnet"))

        # When
        asset_store.set_selected_address(other_wallet_address)
        other_view = [x.token_id for x in asset_store.collectibles]
        asset_store.set_selected_address(sample_wallet_address)

        # Then
        assert other_view == ["9"]
        assert [x.token_id for x in asset_store.collectibles] == ["1"]

    def test_network_change_recomputes_projection(self, asset_store, network_context, make_details):
        """
        Given collectibles on mainnet only
        When the network switches to matic and back
        Then the projection should be empty on matic and restored on mainnet
        """
        # Given
        asset_store.add_collectibles([make_details()])

        # When
        network_context.set_network("matic")
        on_matic = asset_store.collectibles
        network_context.set_network("mainnet")

        # Then
        assert on_matic == []
        assert asset_store.active_scope[1] == "mainnet"
        assert len(asset_store.collectibles) == 1

    def test_address_case_does_not_split_scopes(self, asset_store, make_details, sample_wallet_address):
        """
        Given collectibles stored under a checksummed address
        When selecting the same address in lower case
        Then the same scope should be projected
        """
        # Given
        asset_store.add_collectibles([make_details()])

        # When
        asset_store.set_selected_address(sample_wallet_address.lower())

        # Then
        assert len(asset_store.collectibles) == 1


class TestSubscriptions:
    """Tests for state subscriptions."""

    def test_listener_receives_each_new_state(self, asset_store, make_details):
        """
        Given a subscribed listener
        When collectibles are added and the listener unsubscribes
        Then it should have seen exactly the states published while subscribed
        """
        # Given
        seen = []
        unsubscribe = asset_store.subscribe(seen.append)

        # When
        asset_store.add_collectibles([make_details()])
        unsubscribe()
        asset_store.add_collectibles([])

        # Then
        assert len(seen) == 1
        assert len(seen[0].collectibles) == 1
        assert asset_store.collectibles == []

    def test_published_state_is_not_mutated_later(self, asset_store, make_details):
        """
        Given a state captured by a listener
        When the store changes afterwards
        Then the captured state should be unchanged
        """
        # Given
        seen = []
        asset_store.subscribe(seen.append)
        asset_store.add_collectibles([make_details()])

        # When
        asset_store.add_collectibles([])

        # Then
        assert len(seen[0].collectibles) == 1
        assert seen[1].collectibles == []

    def test_failing_listener_is_logged(self, asset_store, make_details, caplog):
        """
        Given a listener that raises and one that records
        When the store changes
        Then the error should be logged and the other listener still called
        """
        # Given
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        asset_store.subscribe(broken)
        asset_store.subscribe(seen.append)

        # When
        with caplog.at_level(logging.ERROR):
            asset_store.add_collectibles([make_details()])

        # Then
        assert len(seen) == 1
        assert "Asset state listener failed" in caplog.text


class TestAddToken:
    """Tests for AssetStore.add_token."""

    def test_adds_and_replaces_by_address(self, asset_store):
        """
        Given a stored token
        When adding the same address again with another symbol
        Then the token should be replaced, not duplicated
        """
        # Given
        asset_store.add_token(CONTRACT_A, "OLD", 18)

        # When
        tokens = asset_store.add_token(CONTRACT_A.upper().replace("0X", "0x"), "NEW", 18, image="https://img/t.png")

        # Then
        assert [x.symbol for x in tokens] == ["NEW"]
        assert asset_store.tokens == tokens
        assert tokens[0].address.lower() == CONTRACT_A
