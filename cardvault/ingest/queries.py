"""GraphQL documents for the Shopify Admin API."""

SHOP_PROBE = "query { shop { name } }"

DEFAULT_LOCATION = "query { location { id name } }"

PRODUCT_CREATE = """
mutation productCreate($input: ProductInput!) {
  productCreate(input: $input) {
    product { id title handle variants(first: 1) { nodes { id inventoryItem { id } } } }
    userErrors { field message }
  }
}
"""

PRODUCT_CREATE_MEDIA = """
mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
  productCreateMedia(productId: $productId, media: $media) {
    media { alt mediaContentType status }
    mediaUserErrors { field message }
  }
}
"""

VARIANTS_BULK_CREATE = """
mutation productVariantsBulkCreate($productId: ID!, $variants: [ProductVariantsBulkInput!]!, $strategy: ProductVariantsBulkCreateStrategy) {
  productVariantsBulkCreate(productId: $productId, variants: $variants, strategy: $strategy) {
    productVariants { id title price inventoryItem { id } selectedOptions { name value } }
    userErrors { field message }
  }
}
"""

VARIANTS_BULK_UPDATE = """
mutation productVariantsBulkUpdate($productId: ID!, $variants: [ProductVariantsBulkInput!]!) {
  productVariantsBulkUpdate(productId: $productId, variants: $variants) {
    productVariants { id price }
    userErrors { field message }
  }
}
"""

INVENTORY_SET_QUANTITIES = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { reason }
    userErrors { field message }
  }
}
"""

INVENTORY_ADJUST_QUANTITIES = """
mutation inventoryAdjustQuantities($input: InventoryAdjustQuantitiesInput!) {
  inventoryAdjustQuantities(input: $input) {
    inventoryAdjustmentGroup { reason }
    userErrors { field message }
  }
}
"""

PUBLICATIONS = """
query { publications(first: 50) { nodes { id name } } }
"""

PUBLISHABLE_PUBLISH = """
mutation publishablePublish($id: ID!, $input: [PublicationInput!]!) {
  publishablePublish(id: $id, input: $input) {
    userErrors { field message }
  }
}
"""

PRODUCT_UPDATE_STATUS = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id status }
    userErrors { field message }
  }
}
"""

PRODUCT_STATUS = """
query productStatus($id: ID!) {
  product(id: $id) {
    id
    title
    handle
    status
    totalInventory
    options { name }
    variants(first: 100) {
      nodes { id title price selectedOptions { name value } inventoryItem { id } }
    }
  }
}
"""

INVENTORY_ITEM_PRODUCT = """
query inventoryItemProduct($id: ID!) {
  inventoryItem(id: $id) { id variant { id product { id } } }
}
"""

COLLECTION_BY_HANDLE = """
query collectionByHandle($handle: String!) {
  collectionByHandle(handle: $handle) { id title }
}
"""

COLLECTION_HAS_PRODUCT = """
query collectionHasProduct($id: ID!, $productId: ID!) {
  collection(id: $id) { id hasProduct(id: $productId) sortOrder }
}
"""

COLLECTION_ADD_PRODUCTS = """
mutation collectionAddProductsV2($id: ID!, $productIds: [ID!]!) {
  collectionAddProductsV2(id: $id, productIds: $productIds) {
    job { id done }
    userErrors { field message }
  }
}
"""

COLLECTION_REORDER = """
mutation collectionReorderProducts($id: ID!, $moves: [MoveInput!]!) {
  collectionReorderProducts(id: $id, moves: $moves) {
    job { id }
    userErrors { field message }
  }
}
"""

INVENTORY_ITEMS_PAGE = """
query inventoryItems($after: String, $locationId: ID!) {
  inventoryItems(first: 100, after: $after) {
    edges {
      node {
        id
        tracked
        variant { price product { id status } }
        inventoryLevel(locationId: $locationId) {
          quantities(names: ["available"]) { quantity }
        }
      }
    }
    pageInfo { endCursor hasNextPage }
  }
}
"""

BULK_OPERATION_RUN = """
mutation bulkOperationRunQuery($query: String!) {
  bulkOperationRunQuery(query: $query) {
    bulkOperation { id status }
    userErrors { field message }
  }
}
"""

BULK_INVENTORY_QUERY = """
{
  productVariants {
    edges {
      node {
        id
        price
        inventoryQuantity
      }
    }
  }
}
"""

BULK_OPERATION_STATUS = """
query bulkOperation($id: ID!) {
  node(id: $id) {
    ... on BulkOperation { id status errorCode objectCount url }
  }
}
"""

